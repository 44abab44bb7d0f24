import pytest

from ekspose.structs.references import DEPLOYMENTS, INGRESSES, SERVICES, InvalidKeyError, \
                                       Resource, split_key


@pytest.mark.parametrize('resource, api_version', [
    (DEPLOYMENTS, 'apps/v1'),
    (SERVICES, 'v1'),
    (INGRESSES, 'networking.k8s.io/v1'),
])
def test_api_version(resource, api_version):
    assert resource.api_version == api_version


def test_equality_ignores_the_kind():
    assert Resource('apps', 'v1', 'deployments') == DEPLOYMENTS
    assert hash(Resource('apps', 'v1', 'deployments')) == hash(DEPLOYMENTS)


def test_repr():
    assert repr(DEPLOYMENTS) == 'deployments.v1.apps'
    assert repr(SERVICES) == 'services.v1'


@pytest.mark.parametrize('resource, namespace, name, params, expected', [
    (SERVICES, None, None, None, '/api/v1/services'),
    (SERVICES, 'ns', None, None, '/api/v1/namespaces/ns/services'),
    (SERVICES, 'ns', 'web', None, '/api/v1/namespaces/ns/services/web'),
    (DEPLOYMENTS, None, None, None, '/apis/apps/v1/deployments'),
    (DEPLOYMENTS, 'ns', None, {'watch': 'true'}, '/apis/apps/v1/namespaces/ns/deployments?watch=true'),
    (INGRESSES, 'ns', 'web', None, '/apis/networking.k8s.io/v1/namespaces/ns/ingresses/web'),
])
def test_urls(resource, namespace, name, params, expected):
    url = resource.get_url(namespace=namespace, name=name, params=params)
    assert url == expected


def test_url_with_server():
    url = SERVICES.get_url(server='https://localhost:443/', namespace='ns')
    assert url == 'https://localhost:443/api/v1/namespaces/ns/services'


def test_url_of_a_namespaced_object_requires_a_namespace():
    with pytest.raises(ValueError):
        SERVICES.get_url(name='web')


def test_url_of_a_cluster_resource_rejects_a_namespace():
    resource = Resource('', 'v1', 'namespaces', namespaced=False)
    with pytest.raises(ValueError):
        resource.get_url(namespace='ns')


@pytest.mark.parametrize('key, expected', [
    ('default/web', ('default', 'web')),
    ('web', (None, 'web')),
])
def test_splitting_valid_keys(key, expected):
    assert split_key(key) == expected


@pytest.mark.parametrize('key', ['', '/', 'ns/', '/web', 'a/b/c', 'a//b'])
def test_splitting_invalid_keys(key):
    with pytest.raises(InvalidKeyError):
        split_key(key)


def test_invalid_key_error_is_a_value_error():
    assert issubclass(InvalidKeyError, ValueError)
