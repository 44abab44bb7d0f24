import asyncio
import logging
import signal
import threading
from typing import Collection, MutableSequence, Optional

from ekspose.clients import auth, login
from ekspose.engines import probing
from ekspose.reactor import caching, ingesting, processing, queueing, reconciling
from ekspose.structs import configuration, credentials, primitives, references
from ekspose.utilities import aiotasks

logger = logging.getLogger(__name__)


def run(
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        settings: Optional[configuration.OperatorSettings] = None,
        namespace: Optional[str] = None,
        kubeconfig: Optional[str] = None,
        connection: Optional[credentials.ConnectionInfo] = None,
        liveness_endpoint: Optional[str] = None,
        stop_flag: Optional[primitives.Flag] = None,
        ready_flag: Optional[primitives.Flag] = None,
) -> None:
    """
    Run the whole controller synchronously.

    This function should be used to run the controller in normal sync mode.
    """
    coro = operator(
        settings=settings,
        namespace=namespace,
        kubeconfig=kubeconfig,
        connection=connection,
        liveness_endpoint=liveness_endpoint,
        stop_flag=stop_flag,
        ready_flag=ready_flag,
    )
    try:
        if loop is not None:
            loop.run_until_complete(coro)
        else:
            asyncio.run(coro)
    except asyncio.CancelledError:
        pass


async def operator(
        *,
        settings: Optional[configuration.OperatorSettings] = None,
        namespace: Optional[str] = None,
        kubeconfig: Optional[str] = None,
        connection: Optional[credentials.ConnectionInfo] = None,
        liveness_endpoint: Optional[str] = None,
        stop_flag: Optional[primitives.Flag] = None,
        ready_flag: Optional[primitives.Flag] = None,
) -> None:
    """
    Run the whole controller asynchronously.

    This function should be used to run the controller in an asyncio event-loop
    if the controller is orchestrated explicitly and manually.

    It is efficiently `spawn_tasks` + `run_tasks` with the API session
    opened before and closed after them.
    """
    info = connection if connection is not None else login.login(kubeconfig=kubeconfig)
    context = auth.APIContext(info)
    try:
        operator_tasks = await spawn_tasks(
            settings=settings,
            namespace=namespace,
            context=context,
            liveness_endpoint=liveness_endpoint,
            stop_flag=stop_flag,
            ready_flag=ready_flag,
        )
        await run_tasks(operator_tasks)
    finally:
        await context.close()


async def spawn_tasks(
        *,
        context: auth.APIContext,
        settings: Optional[configuration.OperatorSettings] = None,
        namespace: Optional[str] = None,
        liveness_endpoint: Optional[str] = None,
        stop_flag: Optional[primitives.Flag] = None,
        ready_flag: Optional[primitives.Flag] = None,
) -> Collection[aiotasks.Task]:
    """
    Spawn all the tasks needed to run the controller.

    The tasks are properly inter-connected with the synchronisation primitives:
    the informer fills the store and feeds the queue, the workers consume
    the queue once the store is synced.
    """
    loop = asyncio.get_running_loop()

    # All tasks of the controller are synced via these primitives and structures:
    settings = settings if settings is not None else configuration.OperatorSettings()
    signal_flag: aiotasks.Future = asyncio.Future()
    tasks: MutableSequence[aiotasks.Task] = []

    store = caching.Store()
    informer = caching.Informer(
        settings=settings,
        resource=references.DEPLOYMENTS,
        namespace=references.NamespaceName(namespace) if namespace else None,
        store=store,
    )
    queue: queueing.WorkQueue[references.ObjectKey] = queueing.WorkQueue(
        name='ekspose',
        rate_limiter=queueing.ItemExponentialRateLimiter(
            base_delay=settings.queueing.retry_base_delay,
            max_delay=settings.queueing.retry_max_delay,
        ),
    )
    ingestor = ingesting.EventIngestor(queue)
    ingestor.subscribe(informer)
    reconciler = reconciling.Reconciler(store=store, settings=settings)

    # All API calls of all tasks go via the same session (the tasks inherit the context).
    auth.context_var.set(context)

    # A background forever-running infrastructural task (an irregular root task).
    tasks.append(asyncio.create_task(
        name="stop-flag checker",
        coro=_stop_flag_checker(
            signal_flag=signal_flag,
            stop_flag=stop_flag)))

    # The only watched resource: its informer keeps the store fresh and triggers the processing.
    tasks.append(aiotasks.create_guarded_task(
        name="watcher of deployments", logger=logger,
        coro=informer.run()))

    # The workers start only when the store is synced, and stop gracefully on exit.
    tasks.append(aiotasks.create_guarded_task(
        name="worker pool", logger=logger,
        coro=_worker_pool(
            informer=informer,
            queue=queue,
            reconciler=reconciler,
            settings=settings,
            ready_flag=ready_flag)))

    # Liveness probing -- so that Kubernetes would know that the controller is alive.
    if liveness_endpoint:
        tasks.append(aiotasks.create_guarded_task(
            name="health reporter", logger=logger,
            coro=probing.health_reporter(
                endpoint=liveness_endpoint,
                informer=informer,
                queue=queue)))

    # Ensure that all guarded tasks got control for a moment to enter the guard.
    await asyncio.sleep(0)

    # On Ctrl+C or pod termination, cancel all tasks gracefully.
    if threading.current_thread() is threading.main_thread():
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
        try:
            loop.add_signal_handler(signal.SIGINT, signal_flag.set_result, signal.SIGINT)
            loop.add_signal_handler(signal.SIGTERM, signal_flag.set_result, signal.SIGTERM)
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")

    else:
        logger.warning("OS signals are ignored: running not in the main thread.")

    return tasks


async def run_tasks(
        root_tasks: Collection[aiotasks.Task],
) -> None:
    """
    Orchestrate the tasks and terminate them gracefully when needed.

    The root tasks are expected to run forever. Their number is limited. Once
    any of them exits, the whole controller and all other root tasks should exit.
    """

    # Run the infinite tasks until one of them fails/exits (they never exit normally).
    # If the controller is cancelled, propagate the cancellation to all the sub-tasks.
    try:
        root_done, root_pending = await aiotasks.wait(root_tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await aiotasks.stop(root_tasks, title="Root", logger=logger, cancelled=True, interval=10)
        raise

    # If the controller is intact, but one of the root tasks has exited (successfully or not),
    # cancel all the remaining root tasks and let them exit gracefully.
    root_cancelled, _ = await aiotasks.stop(root_pending, title="Root", logger=logger, interval=10)

    # If succeeded or if cancellation is silenced, re-raise from failed tasks (if any).
    await aiotasks.reraise(set(root_done) | set(root_cancelled))


async def _stop_flag_checker(
        signal_flag: aiotasks.Future,
        stop_flag: Optional[primitives.Flag],
) -> None:
    """
    A top-level task for external stopping by setting a stop-flag. Once set,
    this task will exit, and thus all other top-level tasks will be cancelled.
    """

    # Selects the flags to be awaited (if set).
    flags = []
    if signal_flag is not None:
        flags.append(signal_flag)
    if stop_flag is not None:
        flags.append(asyncio.create_task(primitives.wait_flag(stop_flag),
                                         name="stop-flag waiter"))

    # Wait until one of the stoppers is set/raised.
    try:
        done, pending = await asyncio.wait(flags, return_when=asyncio.FIRST_COMPLETED)
        future = done.pop()
        result = await future
    except asyncio.CancelledError:
        pass  # controller is stopping for any other reason
    else:
        if result is None:
            logger.info("Stop-flag is raised. Controller is stopping.")
        elif isinstance(result, signal.Signals):
            logger.info("Signal %s is received. Controller is stopping.", result.name)
        else:
            logger.info("Stop-flag is set to %r. Controller is stopping.", result)
    finally:
        for flag in flags:
            if isinstance(flag, asyncio.Task) and not flag.done():
                flag.cancel()


async def _worker_pool(
        *,
        informer: caching.Informer,
        queue: queueing.WorkQueue[references.ObjectKey],
        reconciler: reconciling.Reconciler,
        settings: configuration.OperatorSettings,
        ready_flag: Optional[primitives.Flag],
) -> None:
    """
    Run the workers once the cache is synced, and stop them on exit.

    On exit, the queue is shut down, so that no new items are taken.
    The items already in processing are given some time to finish,
    after which they are cancelled.
    """
    workers: Collection[aiotasks.Task] = []
    try:
        # Until the initial listing is complete, the cache misses would be false negatives.
        await informer.wait_for_sync()

        logger.info(f"Starting {settings.queueing.worker_count} worker(s).")
        workers = [
            asyncio.create_task(
                name=f"worker #{idx}",
                coro=processing.worker(queue=queue, reconciler=reconciler, settings=settings))
            for idx in range(settings.queueing.worker_count)
        ]
        await primitives.raise_flag(ready_flag)

        # The workers never exit unless the queue is shut down.
        await aiotasks.wait(workers)

    finally:
        queue.shut_down()
        _, pending = await aiotasks.wait(workers, timeout=settings.queueing.exit_timeout)
        await aiotasks.stop(pending, title="Worker", logger=logger, quiet=True)
