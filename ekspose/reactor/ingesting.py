"""
The bridge from the informer's notifications to the work-queue.

Only the keys of the objects are queued, never the objects themselves:
by the time a key is processed, the object can be changed again or gone,
so the reconciler takes the latest state from the store anyway.

The object updates are intentionally not queued: the reconciliation only
ever creates the missing exposure objects, so re-reconciling an object
that was already exposed brings nothing new. The deletions are queued:
they are processed as the no-op cache misses.
"""
import logging
from typing import Union

from ekspose.reactor import caching, queueing
from ekspose.structs import bodies, references

logger = logging.getLogger(__name__)


class EventIngestor:

    def __init__(
            self,
            queue: queueing.WorkQueue[references.ObjectKey],
    ) -> None:
        super().__init__()
        self.queue = queue

    def subscribe(self, informer: caching.Informer) -> None:
        informer.add_handler(on_add=self.on_add, on_delete=self.on_delete)

    def on_add(self, body: Union[bodies.RawBody, bodies.Tombstone]) -> None:
        self._enqueue(body, 'addition')

    def on_delete(self, body: Union[bodies.RawBody, bodies.Tombstone]) -> None:
        self._enqueue(body, 'deletion')

    def _enqueue(self, body: Union[bodies.RawBody, bodies.Tombstone], what: str) -> None:
        try:
            key = bodies.make_key(body)
        except bodies.KeyingError as e:
            logger.error(f"Dropping the {what} notification: {e}")
        else:
            logger.debug(f"Queueing {key!r} on {what}.")
            self.queue.add(key)
