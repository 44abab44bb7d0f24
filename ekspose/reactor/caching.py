"""
The local cache of the watched objects and its synchronisation with the cluster.

The informer consumes the watch-stream (see :mod:`ekspose.clients.watching`),
keeps the store up to date with the latest known state of every object,
and notifies the registered handlers about the objects' changes.

The store is written only by the informer. Everything else (the reconciler)
only reads from it, and only after the initial listing is complete
(i.e. after the informer is "synced"), so that the lookups do not miss
the objects merely because they were not yet listed.

On every re-listing of the objects (e.g. after the watch-stream is restarted
because of the expired resource version), the objects that were cached
but are absent in the fresh listing are considered deleted: the handlers are
notified with tombstones, since the actual deletion events were never seen.
"""
import logging
from typing import Callable, Collection, Dict, Iterable, List, Optional, Union

from ekspose.clients import watching
from ekspose.structs import bodies, configuration, primitives, references

logger = logging.getLogger(__name__)

Handler = Callable[[Union[bodies.RawBody, bodies.Tombstone]], None]


class Store:
    """
    The latest known state of the objects, indexed by their keys.
    """

    def __init__(self) -> None:
        super().__init__()
        self._items: Dict[references.ObjectKey, bodies.RawBody] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self._items)} objects>'

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def keys(self) -> Collection[references.ObjectKey]:
        return frozenset(self._items)

    def get(
            self,
            namespace: references.Namespace,
            name: str,
    ) -> Optional[bodies.RawBody]:
        """ Get an object by its identity; ``None`` if it is not (or no longer) known. """
        key = references.ObjectKey(f'{namespace}/{name}' if namespace else name)
        return self._items.get(key)

    def upsert(self, body: bodies.RawBody) -> references.ObjectKey:
        key = bodies.make_key(body)
        self._items[key] = body
        return key

    def remove(self, body: Union[bodies.RawBody, bodies.Tombstone]) -> Optional[bodies.RawBody]:
        key = bodies.make_key(body)
        return self._items.pop(key, None)

    def replace(self, objs: Iterable[bodies.RawBody]) -> Collection[bodies.Tombstone]:
        """
        Replace the whole content with the fresh listing.

        Returns the tombstones of the objects that are now gone.
        """
        items = {bodies.make_key(body): body for body in objs}
        tombstones = [bodies.Tombstone(key=key, object=body)
                      for key, body in self._items.items() if key not in items]
        self._items = items
        return tombstones


class Informer:
    """
    A watcher of one resource, which keeps the store synchronised with the cluster.

    The handlers are called synchronously for every change seen. They must be
    fast and must not fail: e.g., only put the objects' keys to a work-queue.
    """

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            resource: references.Resource,
            namespace: references.Namespace,
            store: Optional[Store] = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.resource = resource
        self.namespace = namespace
        self.store = store if store is not None else Store()
        self.synced = primitives.Toggle(False, name=f'{resource!r} synced')
        self._on_add: List[Handler] = []
        self._on_update: List[Handler] = []
        self._on_delete: List[Handler] = []

    def add_handler(
            self,
            *,
            on_add: Optional[Handler] = None,
            on_update: Optional[Handler] = None,
            on_delete: Optional[Handler] = None,
    ) -> None:
        if on_add is not None:
            self._on_add.append(on_add)
        if on_update is not None:
            self._on_update.append(on_update)
        if on_delete is not None:
            self._on_delete.append(on_delete)

    def has_synced(self) -> bool:
        return self.synced.is_on()

    async def wait_for_sync(self) -> None:
        await self.synced.wait_for(True)

    async def run(
            self,
            *,
            _iterations: Optional[int] = None,  # used in tests/mocks/fixtures
    ) -> None:
        """
        Consume the watch-stream forever (until cancelled).
        """
        listed: Dict[references.ObjectKey, bodies.RawBody] = {}
        async for raw_event in watching.infinite_watch(
            settings=self.settings,
            resource=self.resource,
            namespace=self.namespace,
            _iterations=_iterations,
        ):
            if isinstance(raw_event, watching.Bookmark):
                if raw_event == watching.Bookmark.LISTED:
                    await self._relisted(listed.values())
                    listed = {}
            elif raw_event['type'] is None:
                try:
                    listed[bodies.make_key(raw_event['object'])] = raw_event['object']
                except bodies.KeyingError as e:
                    logger.warning(f"Ignoring a listed object: {e}")
            else:
                self.ingest(raw_event)

    def ingest(self, raw_event: bodies.RawEvent) -> None:
        """
        Apply one watch-event to the store and notify the handlers.
        """
        raw_type = raw_event['type']
        body = raw_event['object']
        try:
            if raw_type == 'DELETED':
                self.store.remove(body)
                self._notify(self._on_delete, body)
            elif bodies.make_key(body) in self.store:
                self.store.upsert(body)
                self._notify(self._on_update, body)
            else:
                self.store.upsert(body)
                self._notify(self._on_add, body)
        except bodies.KeyingError as e:
            logger.warning(f"Ignoring a {raw_type} event: {e}")

    async def _relisted(self, objs: Collection[bodies.RawBody]) -> None:
        known = self.store.keys()
        tombstones = self.store.replace(objs)
        for body in objs:
            if bodies.make_key(body) in known:
                self._notify(self._on_update, body)
            else:
                self._notify(self._on_add, body)
        for tombstone in tombstones:
            self._notify(self._on_delete, tombstone)

        if self.synced.is_off():
            logger.debug(f"The cache of {self.resource!r} is synced: {len(self.store)} objects.")
        await self.synced.turn_to(True)

    def _notify(
            self,
            handlers: Collection[Handler],
            obj: Union[bodies.RawBody, bodies.Tombstone],
    ) -> None:
        for handler in handlers:
            handler(obj)
