"""
The workers: the consumers of the work-queue.

Every worker takes the work items one by one, reconciles them, and decides
on the outcome. This is the only place where the decisions are made
on whether a failed item is retried later or dropped for good:

* Succeeded: the item's retry history is forgotten.
* Failed permanently: the item is dropped with an error in the logs.
* Failed temporarily: the item is re-queued with a per-item backoff,
  unless it has been retried too many times already, in which case
  it is dropped with an error in the logs (only once per exhaustion).

Unexpected errors are treated as temporary ones (with tracebacks in the logs).

The same item is never processed by two workers at the same time:
this is guaranteed by the work-queue, not by the workers.
"""
import logging
from typing import Optional

from ekspose.engines import loggers
from ekspose.reactor import errors, queueing, reconciling
from ekspose.structs import configuration, references
from ekspose.utilities import typedefs

logger = logging.getLogger(__name__)


async def worker(
        *,
        queue: queueing.WorkQueue[references.ObjectKey],
        reconciler: reconciling.Reconciler,
        settings: configuration.OperatorSettings,
) -> None:
    """
    Process the work items until the queue is shut down.
    """
    while await process_item(queue=queue, reconciler=reconciler, settings=settings):
        pass


async def process_item(
        *,
        queue: queueing.WorkQueue[references.ObjectKey],
        reconciler: reconciling.Reconciler,
        settings: configuration.OperatorSettings,
) -> bool:
    """
    Take one item from the queue and process it. Return ``False`` on shutdown.
    """
    key, shutdown = await queue.get()
    if shutdown or key is None:
        return False

    object_logger = make_logger(key)
    try:
        error: Optional[Exception] = None
        try:
            await reconciler.reconcile(key, logger=object_logger)
        except Exception as e:
            error = e
        handle_outcome(queue=queue, key=key, error=error, settings=settings, logger=object_logger)
    finally:
        queue.done(key)
    return True


def handle_outcome(
        *,
        queue: queueing.WorkQueue[references.ObjectKey],
        key: references.ObjectKey,
        error: Optional[Exception],
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> None:
    """
    Decide on the item's fate after the reconciliation: forget, retry, or drop it.
    """
    if error is None:
        queue.forget(key)
    elif isinstance(error, errors.PermanentError):
        logger.error(f"Reconciliation has failed permanently; dropping: {error}")
        queue.forget(key)
    else:
        requeues = queue.num_requeues(key)
        if requeues >= settings.queueing.max_retries:
            logger.error(f"Reconciliation has failed {requeues + 1} times; "
                         f"dropping after the last error: {error}")
            queue.forget(key)
            return

        delay = error.delay if isinstance(error, errors.TemporaryError) else None
        backoff = queue.add_rate_limited(key, delay=delay)
        if isinstance(error, errors.TemporaryError):
            logger.warning(f"Reconciliation has failed temporarily; "
                           f"retrying in {backoff:.3f}s: {error}")
        else:
            logger.exception(f"Reconciliation has failed with an unexpected error; "
                             f"retrying in {backoff:.3f}s.", exc_info=error)


def make_logger(key: references.ObjectKey) -> typedefs.Logger:
    """ A per-object logger, even if the key is malformed (it is then used as a name). """
    try:
        namespace, name = references.split_key(key)
    except references.InvalidKeyError:
        return loggers.ObjectLogger(name=key)
    else:
        return loggers.ObjectLogger(namespace=namespace, name=name)
