"""
Outcomes of the reconciliation, as seen by the workers.

The reconciler raises these errors; the worker is the only place that decides
what to do with them: to retry the work item later, or to drop it for good.
All other (unexpected) exceptions are retried as temporary ones.
"""
import asyncio
from typing import Optional

import aiohttp

from ekspose.clients import errors


class ReconciliationError(Exception):
    """ A base class for all classified errors of the reconciliation. """


class PermanentError(ReconciliationError):
    """ A fatal reconciliation error, the retries are useless. """


class TemporaryError(ReconciliationError):
    """ A potentially recoverable error, should be retried. """
    def __init__(
            self,
            __msg: Optional[str] = None,
            delay: Optional[float] = None,
    ) -> None:
        super().__init__(__msg)
        self.delay = delay


class InvalidKeyError(PermanentError):
    """ The work item cannot be decomposed into the object's namespace and name. """


def classify_api_error(exc: Exception, *, what: str) -> ReconciliationError:
    """
    Convert the API & networking errors to the reconciliation outcomes.

    Only the server-side errors, the rate-limiting, and the networking issues
    are worth retrying. Other client-side errors (validation, permissions)
    will fail the same way on every attempt.
    """
    if isinstance(exc, errors.APITooManyRequestsError):
        retry_after = exc.details.get('retryAfterSeconds') if exc.details else None
        return TemporaryError(f"{what} is throttled by the API: {exc}", delay=retry_after)
    elif isinstance(exc, errors.APIServerError):
        return TemporaryError(f"{what} has failed on the server side: {exc}")
    elif isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return TemporaryError(f"{what} has failed due to networking: {exc!r}")
    elif isinstance(exc, errors.APIError):
        return PermanentError(f"{what} is rejected by the API ({exc.status}): {exc}")
    else:
        return TemporaryError(f"{what} has failed unexpectedly: {exc!r}")
