import base64
import contextlib
import functools
import ssl
import tempfile
from contextvars import ContextVar
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union, cast

import aiohttp

from ekspose.structs import credentials

# Per-controller API context: the authenticated session and the server's info.
# Set by `spawn_tasks`, so that every controller's task has the same context.
context_var: ContextVar['APIContext'] = ContextVar('context_var')

# A typevar to show that we return a function with the same signature as given.
_F = TypeVar('_F', bound=Callable[..., Any])


def authenticated(fn: _F) -> _F:
    """
    A decorator to inject a pre-authenticated session to a requesting routine.

    If the context is passed explicitly, it is used as is. Otherwise, it is taken
    from the controller's context variable, as set at the controller's startup.
    """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        context: APIContext = kwargs.pop('context', None) or context_var.get()
        response = await fn(*args, **kwargs, context=context)
        if isinstance(response, aiohttp.ClientResponse):
            # Keep track of responses which are using this context.
            context.add_response(response)
        return response

    return cast(_F, wrapper)


class APIContext:
    """
    A container for an aiohttp session and the caches of the environment info.

    The container is constructed only once per controller from the credentials.
    We assume that the whole controller runs in the same event loop, so there is
    no need to split the sessions for multiple loops.
    """

    # The main contained object used by the API methods.
    session: aiohttp.ClientSession

    # Contextual information for URL building.
    server: str
    default_namespace: Optional[str]

    # List of open responses.
    responses: List[aiohttp.ClientResponse]

    def __init__(
            self,
            info: credentials.ConnectionInfo,
    ) -> None:
        super().__init__()
        self.session = self.make_aiohttp_session(info)
        self.server = info.server
        self.default_namespace = info.default_namespace
        self.responses = []

    def make_aiohttp_session(self, info: credentials.ConnectionInfo) -> aiohttp.ClientSession:

        # The client certificate & key are loaded only from files, so the inline data
        # go to temporary files, which are needed only until the SSL context is built.
        with contextlib.ExitStack() as stack:
            cert_path = _as_file(stack, info.certificate_path, info.certificate_data)
            pkey_path = _as_file(stack, info.private_key_path, info.private_key_data)
            context = ssl.create_default_context(
                purpose=ssl.Purpose.SERVER_AUTH,
                cafile=info.ca_path,
                cadata=decode_to_pem(info.ca_data) if info.ca_data is not None else None,
            )
            if cert_path and pkey_path:
                context.load_cert_chain(certfile=cert_path, keyfile=pkey_path)

        if info.insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        headers: Dict[str, str] = {'User-Agent': 'ekspose'}
        if info.scheme or info.token:
            scheme = info.scheme or 'Bearer'
            headers['Authorization'] = f'{scheme} {info.token}' if info.token else scheme

        auth: Optional[aiohttp.BasicAuth] = None
        if info.username and info.password:
            auth = aiohttp.BasicAuth(info.username, info.password)

        return aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=context),
            headers=headers,
            auth=auth,
        )

    def add_response(self, response: aiohttp.ClientResponse) -> None:
        # Keep track of responses so they can be closed later when the session is closed.
        # There's no point keeping references to already closed responses.
        self.responses[:] = [_response for _response in self.responses if not _response.closed]
        if not response.closed:
            self.responses.append(response)

    async def close(self) -> None:
        # Close all responses that are still open and are using this session.
        for response in self.responses:
            if not response.closed:
                response.close()
        self.responses.clear()
        await self.session.close()


def decode_to_pem(data: Union[str, bytes]) -> str:
    if isinstance(data, str) and data.startswith('-----BEGIN '):
        return data
    elif isinstance(data, bytes) and data.startswith(b'-----BEGIN '):
        return data.decode('ascii')
    else:
        return base64.b64decode(data).decode('ascii')


def _as_file(
        stack: contextlib.ExitStack,
        path: Optional[str],
        data: Optional[Union[str, bytes]],
) -> Optional[str]:
    """ Use the file path as is, or store the inline PEM data to a temporary file. """
    if path:
        return path
    if not data:
        return None
    file = stack.enter_context(tempfile.NamedTemporaryFile(buffering=0))
    file.write(decode_to_pem(data).encode('ascii'))
    return file.name
