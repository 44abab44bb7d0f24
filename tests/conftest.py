import asyncio
import collections
import contextvars
import json
import logging
import re
import time
from typing import Any, Deque, Dict, List, Optional, Tuple

import aiohttp.web
import pytest
from aiohttp.test_utils import TestServer

from ekspose.clients import auth
from ekspose.clients.auth import APIContext
from ekspose.reactor.caching import Store
from ekspose.structs.configuration import OperatorSettings
from ekspose.structs.credentials import ConnectionInfo
from ekspose.structs.references import DEPLOYMENTS


@pytest.fixture()
def settings():
    settings = OperatorSettings()
    settings.networking.error_backoffs = []  # fail fast, do not retry the requests in tests
    settings.watching.reconnect_backoff = 0
    return settings


@pytest.fixture()
def store():
    return Store()


def _make_deployment(name='web', namespace='default', labels=None, **meta):
    return {
        'apiVersion': DEPLOYMENTS.api_version,
        'kind': DEPLOYMENTS.kind,
        'metadata': dict(meta, name=name, namespace=namespace),
        'spec': {
            'template': {
                'metadata': {'labels': dict(labels if labels is not None else {'app': name})},
            },
        },
    }


@pytest.fixture()
def make_deployment():
    """ A factory of minimal deployments as returned from the API. """
    return _make_deployment


@pytest.fixture()
def deployment():
    return _make_deployment()


#
# A fake Kubernetes API server: a tiny in-memory cluster served via aiohttp.
# No external calls must be made under any circumstances.
# The unit-tests must be fully isolated from the environment.
#

class FakeCluster:
    """
    An in-memory storage of the objects with the K8s-like HTTP API on top of it.

    Only the endpoints used by the controller are served: listing & watching
    the deployments, creating & reading the services & ingresses.

    The failures can be injected per method & resource: the next N requests
    respond with the specified status, the following ones work as usual.
    """

    def __init__(self) -> None:
        super().__init__()
        self.objects: Dict[Tuple[str, Optional[str], str], Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str, Any]] = []
        self.failures: Dict[Tuple[str, str], Deque[Tuple[int, Dict[str, Any]]]] = {}
        self.empty_creations = False
        self.resource_version = 100
        self.watchers: List[asyncio.Queue] = []
        self.watching = asyncio.Event()

    def add(self, plural: str, body: Dict[str, Any]) -> None:
        meta = body['metadata']
        self.objects[(plural, meta.get('namespace'), meta['name'])] = body

    def get(self, plural: str, namespace: Optional[str], name: str) -> Optional[Dict[str, Any]]:
        return self.objects.get((plural, namespace, name))

    def list(self, plural: str) -> List[Dict[str, Any]]:
        return [body for (p, _, _), body in self.objects.items() if p == plural]

    def fail(self, method: str, plural: str, *, status: int, reason: str = 'Failure',
             times: int = 1, details: Optional[Dict[str, Any]] = None) -> None:
        payload = {'apiVersion': 'v1', 'kind': 'Status', 'status': 'Failure',
                   'code': status, 'reason': reason, 'message': f'injected {status}'}
        if details is not None:
            payload['details'] = details
        queue = self.failures.setdefault((method.upper(), plural), collections.deque())
        queue.extend([(status, payload)] * times)

    def posted(self, plural: str) -> List[Any]:
        return [data for method, path, data in self.requests
                if method == 'POST' and path.endswith(f'/{plural}')]

    def push(self, event: Dict[str, Any]) -> None:
        """ Send a watch-event to all currently connected watchers. """
        for watcher in self.watchers:
            watcher.put_nowait(event)

    def close_watches(self) -> None:
        for watcher in self.watchers:
            watcher.put_nowait(None)

    def make_app(self) -> aiohttp.web.Application:
        app = aiohttp.web.Application()
        app.add_routes([
            aiohttp.web.get('/apis/{group}/{version}/{plural}', self.list_or_watch),
            aiohttp.web.get('/apis/{group}/{version}/namespaces/{namespace}/{plural}', self.list_or_watch),
            aiohttp.web.post('/api/{version}/namespaces/{namespace}/{plural}', self.create),
            aiohttp.web.post('/apis/{group}/{version}/namespaces/{namespace}/{plural}', self.create),
            aiohttp.web.get('/api/{version}/namespaces/{namespace}/{plural}/{name}', self.read),
            aiohttp.web.get('/apis/{group}/{version}/namespaces/{namespace}/{plural}/{name}', self.read),
        ])
        return app

    def _injected_failure(self, request: aiohttp.web.Request) -> Optional[aiohttp.web.Response]:
        queue = self.failures.get((request.method, request.match_info['plural']))
        if queue:
            status, payload = queue.popleft()
            return aiohttp.web.json_response(payload, status=status)
        return None

    async def list_or_watch(self, request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        self.requests.append((request.method, request.path_qs, None))
        failure = self._injected_failure(request)
        if failure is not None:
            return failure

        plural = request.match_info['plural']
        namespace = request.match_info.get('namespace')
        if request.query.get('watch') != 'true':
            items = [body for body in self.list(plural)
                     if namespace is None or body['metadata'].get('namespace') == namespace]
            return aiohttp.web.json_response({
                'apiVersion': 'v1',
                'kind': 'DeploymentList',
                'metadata': {'resourceVersion': str(self.resource_version)},
                'items': items,
            })

        queue: asyncio.Queue = asyncio.Queue()
        self.watchers.append(queue)
        self.watching.set()
        response = aiohttp.web.StreamResponse()
        await response.prepare(request)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                await response.write(json.dumps(event).encode('utf-8') + b'\n')
        finally:
            self.watchers.remove(queue)
        return response

    async def create(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        data = await request.json()
        self.requests.append((request.method, request.path_qs, data))
        failure = self._injected_failure(request)
        if failure is not None:
            return failure

        plural = request.match_info['plural']
        namespace = request.match_info['namespace']
        name = data['metadata']['name']
        if self.get(plural, namespace, name) is not None:
            return aiohttp.web.json_response({
                'apiVersion': 'v1', 'kind': 'Status', 'status': 'Failure', 'code': 409,
                'reason': 'AlreadyExists', 'message': f'{plural} "{name}" already exists',
            }, status=409)

        self.resource_version += 1
        body = dict(data, metadata=dict(data['metadata'], namespace=namespace,
                                        resourceVersion=str(self.resource_version)))
        self.add(plural, body)
        return aiohttp.web.json_response({} if self.empty_creations else body, status=201)

    async def read(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        self.requests.append((request.method, request.path_qs, None))
        failure = self._injected_failure(request)
        if failure is not None:
            return failure

        match = request.match_info
        body = self.get(match['plural'], match['namespace'], match['name'])
        if body is None:
            return aiohttp.web.json_response({
                'apiVersion': 'v1', 'kind': 'Status', 'status': 'Failure', 'code': 404,
                'reason': 'NotFound', 'message': 'not found',
            }, status=404)
        return aiohttp.web.json_response(body)


@pytest.fixture()
async def cluster():
    return FakeCluster()


@pytest.fixture()
async def fake_api(cluster):
    server = TestServer(cluster.make_app())
    await server.start_server(shutdown_timeout=0.1)
    try:
        yield server
    finally:
        cluster.close_watches()
        await server.close()


@pytest.fixture()
def connection(fake_api):
    return ConnectionInfo(server=str(fake_api.make_url('/')))


@pytest.fixture()
async def api_context(connection, mocker):
    """
    The API context for the client routines, as if set by the controller's startup.

    It is injected as the context variable's default value, so that it is seen
    in all the tasks of the test regardless of how & when they are started.
    """
    context = APIContext(connection)
    mocker.patch.object(auth, 'context_var', contextvars.ContextVar('context_var', default=context))
    try:
        yield context
    finally:
        await context.close()


#
# Helpers for the timing checks.
#

@pytest.fixture()
def timer():
    return Timer()


class Timer:
    """
    A helper context manager to measure the time of the code-blocks.

    Usage:

        with Timer() as timer:
            do_something()

        assert timer.seconds < 5.0
    """

    def __init__(self):
        super().__init__()
        self._ts = None
        self._te = None

    @property
    def seconds(self):
        if self._ts is None:
            return None
        elif self._te is None:
            return time.perf_counter() - self._ts
        else:
            return self._te - self._ts

    def __enter__(self):
        self._ts = time.perf_counter()
        self._te = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._te = time.perf_counter()


#
# Helpers for the logging checks.
#

@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    caplog.set_level(logging.DEBUG)

    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn

