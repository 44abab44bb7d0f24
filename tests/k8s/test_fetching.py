import logging

import pytest

from ekspose.clients.errors import APIClientError, APINotFoundError
from ekspose.clients.fetching import list_objs, read_obj
from ekspose.structs.references import DEPLOYMENTS, SERVICES

logger = logging.getLogger('tests')


async def test_reading_an_existing_object(cluster, api_context, settings):
    cluster.add('services', {'metadata': {'namespace': 'ns', 'name': 'name1'}, 'spec': {}})
    body = await read_obj(settings=settings, resource=SERVICES,
                          namespace='ns', name='name1', logger=logger)
    assert body == {'metadata': {'namespace': 'ns', 'name': 'name1'}, 'spec': {}}
    assert cluster.requests == [('GET', '/api/v1/namespaces/ns/services/name1', None)]


async def test_reading_an_absent_object(cluster, api_context, settings):
    with pytest.raises(APINotFoundError) as err:
        await read_obj(settings=settings, resource=SERVICES,
                       namespace='ns', name='name1', logger=logger)
    assert err.value.status == 404
    assert err.value.reason == 'NotFound'


async def test_listing_cluster_wide(cluster, api_context, settings, make_deployment):
    cluster.add('deployments', make_deployment('a', namespace='ns1'))
    cluster.add('deployments', make_deployment('b', namespace='ns2'))
    objs, resource_version = await list_objs(settings=settings, resource=DEPLOYMENTS,
                                             namespace=None, logger=logger)
    assert {obj['metadata']['name'] for obj in objs} == {'a', 'b'}
    assert resource_version == '100'
    assert cluster.requests[0][1] == '/apis/apps/v1/deployments'


async def test_listing_in_a_namespace(cluster, api_context, settings, make_deployment):
    cluster.add('deployments', make_deployment('a', namespace='ns1'))
    cluster.add('deployments', make_deployment('b', namespace='ns2'))
    objs, _ = await list_objs(settings=settings, resource=DEPLOYMENTS,
                              namespace='ns1', logger=logger)
    assert [obj['metadata']['name'] for obj in objs] == ['a']
    assert cluster.requests[0][1] == '/apis/apps/v1/namespaces/ns1/deployments'


async def test_listing_restores_the_kinds(cluster, api_context, settings):
    cluster.add('deployments', {'metadata': {'namespace': 'ns', 'name': 'a'}})
    objs, _ = await list_objs(settings=settings, resource=DEPLOYMENTS,
                              namespace=None, logger=logger)
    assert objs[0]['kind'] == 'Deployment'
    assert objs[0]['apiVersion'] == 'v1'


async def test_listing_nothing(cluster, api_context, settings):
    objs, resource_version = await list_objs(settings=settings, resource=DEPLOYMENTS,
                                             namespace=None, logger=logger)
    assert objs == []
    assert resource_version == '100'


@pytest.mark.parametrize('status', [401, 403])
async def test_listing_fails_on_client_errors(cluster, api_context, settings, status):
    cluster.fail('get', 'deployments', status=status)
    with pytest.raises(APIClientError) as err:
        await list_objs(settings=settings, resource=DEPLOYMENTS, namespace=None, logger=logger)
    assert err.value.status == status
