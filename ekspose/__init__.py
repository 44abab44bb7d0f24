"""
The main ekspose module for all the exported functions & classes.
"""
# isort: skip_file

from ekspose.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIConflictError,
    APINotFoundError,
)
from ekspose.engines.loggers import (
    configure,
    LogFormat,
    ObjectLogger,
)
from ekspose.reactor.caching import (
    Informer,
    Store,
)
from ekspose.reactor.errors import (
    ReconciliationError,
    PermanentError,
    TemporaryError,
)
from ekspose.reactor.queueing import (
    WorkQueue,
    ItemExponentialRateLimiter,
)
from ekspose.reactor.reconciling import (
    Reconciler,
    build_service,
    build_ingress,
)
from ekspose.reactor.running import (
    spawn_tasks,
    run_tasks,
    operator,
    run,
)
from ekspose.structs.configuration import (
    OperatorSettings,
)
from ekspose.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from ekspose.structs.primitives import (
    Toggle,
)

__version__ = '0.1.0'

__all__ = [
    'APIError',
    'APIClientError',
    'APIServerError',
    'APIConflictError',
    'APINotFoundError',
    'configure',
    'LogFormat',
    'ObjectLogger',
    'Informer',
    'Store',
    'ReconciliationError',
    'PermanentError',
    'TemporaryError',
    'WorkQueue',
    'ItemExponentialRateLimiter',
    'Reconciler',
    'build_service',
    'build_ingress',
    'spawn_tasks',
    'run_tasks',
    'operator',
    'run',
    'OperatorSettings',
    'LoginError',
    'ConnectionInfo',
    'Toggle',
]
