"""
Low-level HTTP calls to the Kubernetes API with retries of transient failures.

The calls are authenticated with the API context (see :mod:`ekspose.clients.auth`).
All of them are retried on the connection errors, timeouts, and HTTP 5xx
responses, with the backoffs from ``settings.networking.error_backoffs``.
The HTTP 4xx responses are never retried here: they are turned into the API
errors (see :mod:`ekspose.clients.errors`) for the caller to decide.
"""
import asyncio
import collections.abc
import itertools
import json
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

import aiohttp

from ekspose.clients import auth, errors
from ekspose.structs import configuration
from ekspose.utilities import typedefs

RETRYABLE_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


def _get_backoffs(settings: configuration.OperatorSettings) -> Iterable[float]:
    backoffs = settings.networking.error_backoffs
    if isinstance(backoffs, collections.abc.Iterable):
        return backoffs
    return [backoffs]


@auth.authenticated
async def request(
        method: str,
        url: str,  # relative to the server root, or absolute.
        *,
        settings: configuration.OperatorSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        context: Optional[auth.APIContext] = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Send a request and return the successful response, still unread.

    The caller is responsible for reading and releasing the response.
    """
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    if '://' not in url:
        url = f"{context.server.rstrip('/')}/{url.lstrip('/')}"
    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    backoffs = _get_backoffs(settings)
    total = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    what = f"{method.upper()} {url}"
    delays = itertools.chain(backoffs, [None])
    for attempt, delay in enumerate(delays, start=1):
        idx = f"#{attempt}" if total is None else f"#{attempt}/{total}"
        if attempt > 1:
            logger.debug(f"Request attempt {idx}: {what}")
        try:
            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)
        except RETRYABLE_ERRORS as e:
            if delay is None:
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(delay)
        else:
            if attempt > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("The retries are exhausted without an error.")  # for type-checking.


async def _request_json(method: str, url: str, **kwargs: Any) -> Any:
    response = await request(method, url, **kwargs)
    async with response:
        return await response.json()


async def get(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('get', url, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def post(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _request_json('post', url, payload=payload, headers=headers, timeout=timeout,
                               settings=settings, logger=logger)


async def stream(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """ Yield the parsed JSON documents of a newline-delimited response (a watch-stream). """
    response = await request('get', url, headers=headers, timeout=timeout,
                             settings=settings, logger=logger)
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate over the non-empty lines of the response's content.

    aiohttp's own line iteration (``async for line in response.content``) fails
    on lines longer than its buffer limit (128 KB), while a single Deployment
    with big annotations or a big pod template can be much longer.
    So, the chunks are accumulated and split here, with no limit.
    """
    tail = b''
    async for chunk in content.iter_chunked(chunk_size):
        *lines, tail = (tail + chunk).split(b'\n')
        for line in lines:
            if line:
                yield line
    if tail:
        yield tail
