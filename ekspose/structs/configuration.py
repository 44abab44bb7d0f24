"""
All configuration flags, options, settings to fine-tune the controller.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).

The settings object is created once per controller and passed explicitly
to all the routines that need it. It is never stored globally.
"""
import dataclasses
from typing import Iterable, Mapping, Optional, Union


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the API requests (except watching). It bounds the time
    a worker can be stuck in one creation call for one object.
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for the connection establishing to the API server.
    """

    error_backoffs: Union[float, Iterable[float]] = (1, 1, 1)
    """
    Backoff intervals in case of connection errors or server-side errors (5xx).

    These are the request-level retries within one reconciliation attempt.
    Once exhausted, the error is escalated to the worker, which decides
    whether the work item is retried later via the work-queue.

    Set to an empty collection to disable the request-level retries.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: Optional[float] = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: Optional[float] = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: Optional[float] = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """


@dataclasses.dataclass
class QueueingSettings:

    worker_count: int = 1
    """
    How many workers consume the work-queue concurrently.

    The same object is never processed by two workers at the same time,
    so any number of workers is safe; it only affects the throughput.
    """

    max_retries: int = 5
    """
    How many times a failed work item is re-queued before it is dropped.
    """

    retry_base_delay: float = 0.005
    """
    The initial delay (in seconds) of the per-item exponential backoff.
    It is doubled on every consecutive failure of the same item.
    """

    retry_max_delay: float = 1000.0
    """
    The maximum delay (in seconds) of the per-item exponential backoff.
    """

    exit_timeout: Optional[float] = 2.0
    """
    How long the in-flight reconciliations can run on the controller's exit
    before they are cancelled. ``None`` means waiting for as long as needed.
    """


@dataclasses.dataclass
class ExposureSettings:

    port_name: str = 'http'
    """
    The name of the only port of the created Services.
    """

    port: int = 80
    """
    The number of the only port of the created Services.
    It is also used as the backend port of the created Ingresses.
    """

    path_type: str = 'Prefix'
    """
    The path type of the Ingresses' only rule (``/{name}``).
    """

    ingress_class: Optional[str] = None
    """
    The Ingress class for the created Ingresses. If ``None``, it is not set,
    and the cluster's default class is used.
    """

    annotations: Mapping[str, str] = dataclasses.field(default_factory=lambda: {
        'nginx.ingress.kubernetes.io/rewrite-target': '/',
    })
    """
    The annotations of the created Ingresses. By default, the requests
    to ``/{name}/...`` are re-written to ``/...`` for the backend service.
    """


@dataclasses.dataclass
class OperatorSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    exposure: ExposureSettings = dataclasses.field(default_factory=ExposureSettings)
