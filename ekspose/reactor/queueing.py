"""
The deduplicating, rate-limited queue of the work items.

The work items are the objects' keys (``"namespace/name"``), not the objects:
the actual state of the objects is taken from the local cache at the time
of processing, not at the time of the notification (i.e. level-triggered,
not edge-triggered). Therefore, the notifications for the same object can be
safely squashed into one work item while it waits in the queue.

The queue guarantees that:

* An item is queued only once, no matter how many times it is added
  before it is taken for processing ("dirty" items).
* An item is never given to two workers at the same time. If it is added while
  being processed, it is queued again only after it is released as done,
  and only once, no matter how many times it was added meanwhile.
* Failed items can be re-added with the per-item exponential backoff,
  which is reset only when the item is explicitly forgotten.

All methods are for one event loop: adding is synchronous (it can be used
from the informer's callbacks), getting is asynchronous (it blocks until
an item is available or until the queue is shut down).
"""
import asyncio
import collections
import contextlib
import logging
from typing import Deque, Dict, Generic, Hashable, Optional, Set, Tuple, TypeVar

logger = logging.getLogger(__name__)

_T = TypeVar('_T', bound=Hashable)


class ItemExponentialRateLimiter(Generic[_T]):
    """
    Per-item exponential backoff: ``base_delay * 2 ** failures``, capped.

    Every call to :meth:`when` is considered as a new failure of the item,
    so the next delay is twice longer -- until it is forgotten.
    """

    def __init__(
            self,
            *,
            base_delay: float,
            max_delay: float,
    ) -> None:
        super().__init__()
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: Dict[_T, int] = {}

    def when(self, item: _T) -> float:
        exponent = self._failures.get(item, 0)
        self._failures[item] = exponent + 1

        # Prevent the float overflows for the items failing for too long.
        if exponent >= 64:
            return self._max_delay
        return min(self._base_delay * 2 ** exponent, self._max_delay)

    def num_requeues(self, item: _T) -> int:
        return self._failures.get(item, 0)

    def forget(self, item: _T) -> None:
        self._failures.pop(item, None)


class WorkQueue(Generic[_T]):
    """
    A FIFO queue of work items with deduplication and delayed re-adding.

    The protocol of usage for the workers::

        item, shutdown = await queue.get()
        if shutdown:
            return
        try:
            ...  # process the item
        finally:
            queue.done(item)

    Plus either ``queue.forget(item)`` on success (or on a permanent failure),
    or ``queue.add_rate_limited(item)`` on a failure to be retried.
    """

    def __init__(
            self,
            *,
            name: str,
            rate_limiter: ItemExponentialRateLimiter[_T],
    ) -> None:
        super().__init__()
        self.name = name
        self._rate_limiter = rate_limiter
        self._queue: Deque[_T] = collections.deque()
        self._dirty: Set[_T] = set()  # queued or re-added while processing
        self._processing: Set[_T] = set()
        self._waiting: Dict[_T, Tuple[float, asyncio.TimerHandle]] = {}
        self._getters: Deque[asyncio.Future[None]] = collections.deque()
        self._shutting_down = False

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {self.name}: {len(self._queue)} queued>'

    def __len__(self) -> int:
        return len(self._queue)

    def add(self, item: _T) -> None:
        """ Queue an item unless it is already queued; postpone if it is being processed. """
        if self._shutting_down:
            return
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._wakeup_next()

    def add_after(self, item: _T, delay: float) -> None:
        """
        Queue an item after the delay. If it is already waiting, the earliest time wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        ready_time = loop.time() + delay
        if item in self._waiting:
            existing_time, existing_handle = self._waiting[item]
            if existing_time <= ready_time:
                return
            existing_handle.cancel()

        handle = loop.call_at(ready_time, self._add_waiting, item)
        self._waiting[item] = (ready_time, handle)

    def add_rate_limited(self, item: _T, *, delay: Optional[float] = None) -> float:
        """
        Queue an item after the per-item backoff (or the explicit delay if it is longer).

        Returns the actual delay, mostly for logging.
        """
        backoff = self._rate_limiter.when(item)
        backoff = max(backoff, delay) if delay is not None else backoff
        self.add_after(item, backoff)
        return backoff

    def forget(self, item: _T) -> None:
        """
        Reset the item's backoff, e.g. when it is succeeded or dropped for good.

        A delayed re-queueing of the item, if scheduled, is cancelled too.
        """
        self._rate_limiter.forget(item)
        waiting = self._waiting.pop(item, None)
        if waiting is not None:
            _, handle = waiting
            handle.cancel()

    def num_requeues(self, item: _T) -> int:
        return self._rate_limiter.num_requeues(item)

    async def get(self) -> Tuple[Optional[_T], bool]:
        """
        Take the next item for processing; block until there is one.

        Returns the item and a shutdown flag. Once the queue is shut down,
        the flag is true (and the item is ``None``) for all current and future
        getters, even if some items remain queued: they are not processed.
        """
        loop = asyncio.get_running_loop()
        while not self._queue and not self._shutting_down:
            getter: asyncio.Future[None] = loop.create_future()
            self._getters.append(getter)
            try:
                await getter
            except asyncio.CancelledError:
                getter.cancel()
                with contextlib.suppress(ValueError):
                    self._getters.remove(getter)

                # If this getter was woken up but will not take the item, wake up another one.
                if self._queue:
                    self._wakeup_next()
                raise

        if self._shutting_down:
            return None, True

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item, False

    def done(self, item: _T) -> None:
        """ Release the item; re-queue it if it was added while being processed. """
        self._processing.discard(item)
        if item in self._dirty and not self._shutting_down:
            self._queue.append(item)
            self._wakeup_next()

    def shut_down(self) -> None:
        """ Stop giving the items to the workers, and wake up those waiting for them. """
        self._shutting_down = True
        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)

    def shutting_down(self) -> bool:
        return self._shutting_down

    def processing(self) -> int:
        return len(self._processing)

    def _add_waiting(self, item: _T) -> None:
        self._waiting.pop(item, None)
        self.add(item)

    def _wakeup_next(self) -> None:
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
                break
