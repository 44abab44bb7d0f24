import asyncio
import logging
from unittest.mock import Mock

import pytest

from ekspose.reactor.caching import Informer, Store
from ekspose.structs.references import DEPLOYMENTS


@pytest.fixture()
def informer(settings, store):
    return Informer(settings=settings, resource=DEPLOYMENTS, namespace=None, store=store)


@pytest.fixture()
def handlers(informer):
    handlers = Mock()
    informer.add_handler(on_add=handlers.on_add,
                         on_update=handlers.on_update,
                         on_delete=handlers.on_delete)
    return handlers


def test_store_is_empty_initially(store):
    assert len(store) == 0
    assert store.keys() == frozenset()
    assert store.get('default', 'web') is None


def test_store_upserts_and_gets(store, make_deployment):
    key = store.upsert(make_deployment('web'))
    assert key == 'default/web'
    assert 'default/web' in store
    assert store.get('default', 'web')['metadata']['name'] == 'web'


def test_store_overwrites_the_same_key(store, make_deployment):
    store.upsert(make_deployment('web', labels={'v': '1'}))
    store.upsert(make_deployment('web', labels={'v': '2'}))
    assert len(store) == 1
    body = store.get('default', 'web')
    assert body['spec']['template']['metadata']['labels'] == {'v': '2'}


def test_store_gets_cluster_scoped_objects(store, make_deployment):
    store.upsert(make_deployment('web', namespace=None))
    assert store.keys() == {'web'}
    assert store.get(None, 'web') is not None


def test_store_removes(store, make_deployment):
    store.upsert(make_deployment('web'))
    removed = store.remove(make_deployment('web'))
    assert removed is not None
    assert len(store) == 0


def test_store_removes_absent_objects_silently(store, make_deployment):
    assert store.remove(make_deployment('web')) is None


def test_store_replaces_and_returns_the_tombstones(store, make_deployment):
    store.upsert(make_deployment('a'))
    store.upsert(make_deployment('b'))
    tombstones = store.replace([make_deployment('b'), make_deployment('c')])
    assert store.keys() == {'default/b', 'default/c'}
    assert len(tombstones) == 1
    assert tombstones[0]['key'] == 'default/a'
    assert tombstones[0]['object']['metadata']['name'] == 'a'


def test_informer_is_not_synced_initially(informer):
    assert not informer.has_synced()


def test_added_objects_are_stored_and_notified(informer, handlers, store, deployment):
    informer.ingest({'type': 'ADDED', 'object': deployment})
    assert 'default/web' in store
    assert handlers.on_add.call_args_list == [((deployment,),)]
    assert not handlers.on_update.called
    assert not handlers.on_delete.called


def test_modified_objects_are_stored_and_notified(informer, handlers, store, make_deployment):
    informer.ingest({'type': 'ADDED', 'object': make_deployment('web', labels={'v': '1'})})
    informer.ingest({'type': 'MODIFIED', 'object': make_deployment('web', labels={'v': '2'})})
    body = store.get('default', 'web')
    assert body['spec']['template']['metadata']['labels'] == {'v': '2'}
    assert handlers.on_add.call_count == 1
    assert handlers.on_update.call_count == 1


def test_readded_known_objects_are_updates(informer, handlers, deployment):
    informer.ingest({'type': 'ADDED', 'object': deployment})
    informer.ingest({'type': 'ADDED', 'object': deployment})
    assert handlers.on_add.call_count == 1
    assert handlers.on_update.call_count == 1


def test_modified_unknown_objects_are_additions(informer, handlers, store, deployment):
    informer.ingest({'type': 'MODIFIED', 'object': deployment})
    assert 'default/web' in store
    assert handlers.on_add.call_count == 1
    assert not handlers.on_update.called


def test_deleted_objects_are_removed_and_notified(informer, handlers, store, deployment):
    informer.ingest({'type': 'ADDED', 'object': deployment})
    informer.ingest({'type': 'DELETED', 'object': deployment})
    assert len(store) == 0
    assert handlers.on_delete.call_args_list == [((deployment,),)]


def test_nameless_objects_are_ignored(informer, handlers, store, caplog):
    caplog.set_level(logging.DEBUG)
    informer.ingest({'type': 'ADDED', 'object': {'metadata': {'namespace': 'default'}}})
    assert len(store) == 0
    assert not handlers.on_add.called
    assert "Ignoring a ADDED event" in caplog.text


async def test_relisting_syncs_the_informer(informer, handlers, store, make_deployment):
    await informer._relisted([make_deployment('a'), make_deployment('b')])
    assert informer.has_synced()
    assert store.keys() == {'default/a', 'default/b'}
    assert handlers.on_add.call_count == 2
    assert not handlers.on_update.called
    assert not handlers.on_delete.called


async def test_relisting_tombstones_the_vanished_objects(
        informer, handlers, store, make_deployment):
    await informer._relisted([make_deployment('a'), make_deployment('b')])
    handlers.reset_mock()

    await informer._relisted([make_deployment('b')])
    assert store.keys() == {'default/b'}
    assert handlers.on_update.call_count == 1
    assert handlers.on_delete.call_count == 1
    tombstone = handlers.on_delete.call_args[0][0]
    assert tombstone['key'] == 'default/a'
    assert tombstone['object']['metadata']['name'] == 'a'


async def test_empty_relisting_also_syncs(informer):
    await informer._relisted([])
    assert informer.has_synced()
    await asyncio.wait_for(informer.wait_for_sync(), timeout=0.1)


async def test_waiting_for_sync_blocks_until_listed(informer):
    waiter = asyncio.create_task(informer.wait_for_sync())
    await asyncio.sleep(0.01)
    assert not waiter.done()

    await informer._relisted([])
    await asyncio.wait_for(waiter, timeout=0.1)


async def test_informer_lists_and_watches_the_cluster(
        cluster, api_context, informer, handlers, store, make_deployment):
    cluster.add('deployments', make_deployment('a'))
    task = asyncio.create_task(informer.run())
    try:
        await asyncio.wait_for(informer.wait_for_sync(), timeout=1.0)
        assert store.keys() == {'default/a'}

        await asyncio.wait_for(cluster.watching.wait(), timeout=1.0)
        cluster.push({'type': 'ADDED', 'object': make_deployment('b')})
        cluster.push({'type': 'DELETED', 'object': make_deployment('a')})
        await asyncio.sleep(0.1)
        assert store.keys() == {'default/b'}
        assert handlers.on_add.call_count == 2
        assert handlers.on_delete.call_count == 1
    finally:
        task.cancel()
        await asyncio.wait([task])


async def test_informer_relists_when_the_version_is_gone(
        cluster, api_context, informer, handlers, store, make_deployment):
    cluster.add('deployments', make_deployment('a'))
    cluster.add('deployments', make_deployment('b'))
    task = asyncio.create_task(informer.run())
    try:
        await asyncio.wait_for(cluster.watching.wait(), timeout=1.0)
        assert store.keys() == {'default/a', 'default/b'}

        # Deleted while "disconnected": no deletion event is ever seen.
        del cluster.objects[('deployments', 'default', 'a')]
        cluster.push({'type': 'ERROR', 'object': {'kind': 'Status', 'code': 410}})
        await asyncio.sleep(0.1)

        assert store.keys() == {'default/b'}
        tombstones = [c[0][0] for c in handlers.on_delete.call_args_list]
        assert [t['key'] for t in tombstones] == ['default/a']
        assert handlers.on_update.call_count == 1  # "b" is listed again
    finally:
        task.cancel()
        await asyncio.wait([task])


async def test_informer_in_a_namespace(cluster, api_context, settings, make_deployment):
    cluster.add('deployments', make_deployment('a', namespace='ns1'))
    cluster.add('deployments', make_deployment('b', namespace='ns2'))
    informer = Informer(settings=settings, resource=DEPLOYMENTS, namespace='ns1', store=Store())
    task = asyncio.create_task(informer.run())
    try:
        await asyncio.wait_for(informer.wait_for_sync(), timeout=1.0)
        assert informer.store.keys() == {'ns1/a'}
    finally:
        task.cancel()
        await asyncio.wait([task])

    paths = [path for _, path, _ in cluster.requests]
    assert paths[0] == '/apis/apps/v1/namespaces/ns1/deployments'
