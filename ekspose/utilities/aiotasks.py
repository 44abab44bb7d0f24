"""
Orchestration of the controller's long-running asyncio tasks.

The controller runs a few root tasks (the informer, the worker pool,
the stop-flag checker, the health probe), each of which is expected to run
until the controller exits. The helpers here start such tasks with logging
of their unexpected exits, and stop them on exit with logging of the stuck ones.

Only tasks are supported, not arbitrary awaitables: they are cancelled
as well as awaited.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Collection, Coroutine, Optional, Set, Tuple, cast

from ekspose.utilities.typedefs import Logger

# asyncio's tasks & futures are not subscriptable at runtime in all supported Pythons.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[Logger] = None,
) -> None:
    """
    Run a root task and report how it has ended.

    A root task is not supposed to exit on its own, so a normal exit is
    reported as a warning unless the task is marked as ``finishable``.
    A failure is always reported with its traceback. A cancellation is
    the regular way to stop, and is reported only for non-``cancellable`` tasks.
    """
    title = name[:1].upper() + name[1:]
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: %s", e)
        raise
    if logger is not None and not finishable:
        logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: Optional[Logger] = None,
) -> Task:
    """ Start a named root task wrapped into :func:`guard`. """
    guarded = guard(coro, name, finishable=finishable, cancellable=cancellable, logger=logger)
    return asyncio.create_task(guarded, name=name)


async def wait(
        tasks: Collection[Task],
        *,
        timeout: Optional[float] = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> Tuple[Set[Task], Set[Task]]:
    """ Same as :func:`asyncio.wait`, but an empty collection is done instantly. """
    if not tasks:
        return set(), set()
    done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=return_when)
    return cast(Set[Task], done), cast(Set[Task], pending)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        interval: Optional[float] = None,
        logger: Optional[Logger] = None,
) -> Tuple[Set[Task], Set[Task]]:
    """
    Cancel the tasks and wait until all of them are finished.

    Every ``interval`` seconds, the tasks that are still running are logged
    as stuck. Without the interval, it waits in one go, however long it takes.
    In the quiet mode, only the stuck tasks are logged, not the regular stopping.

    If the stopping itself is cancelled, the tasks are left to finish on their
    own (they are already cancelled), and the cancellation is propagated.
    """
    prefix = title[:1].upper() + title[1:]
    done: Set[Task] = set()
    pending: Set[Task] = set(tasks)
    if not pending:
        if logger is not None and not quiet:
            logger.debug(f"{prefix} tasks stopping is skipped: no tasks given.")
        return done, pending

    for task in pending:
        task.cancel()

    reason = 'double-cancelling' if cancelled else 'cancelling'
    stuck = False
    while pending:
        try:
            done_now, pending = await wait(pending, timeout=interval)
        except asyncio.CancelledError:
            if logger is not None:
                left = {task for task in tasks if not task.done()}
                logger.debug(f"{prefix} tasks are interrupted while {reason}; tasks left: {left!r}")
            raise
        done |= done_now
        if pending:
            stuck = True
            if logger is not None:
                logger.debug(f"{prefix} tasks are not stopped yet; tasks left: {pending!r}")
        elif logger is not None and (stuck or not quiet):
            logger.debug(f"{prefix} tasks are stopped by {reason}.")

    return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """ Re-raise the first failure among the finished tasks; ignore the cancelled ones. """
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise cast(BaseException, task.exception())
