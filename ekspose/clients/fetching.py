from typing import Collection, List, Tuple

from ekspose.clients import api
from ekspose.structs import bodies, configuration, references
from ekspose.utilities import typedefs


async def read_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Read one specific object; raise `APINotFoundError` if it does not exist.
    """
    body: bodies.RawBody = await api.get(
        url=resource.get_url(namespace=namespace, name=name),
        logger=logger,
        settings=settings,
    )
    return body


async def list_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        logger: typedefs.Logger,
) -> Tuple[Collection[bodies.RawBody], str]:
    """
    List the objects of specific resource type.

    The cluster-wide call is used if the controller serves all namespaces.
    Otherwise, the namespace-scoped call is used.

    The list's resource version is returned too: the watch-stream continues
    from this version, so that no changes are lost between listing & watching.
    """
    rsp = await api.get(
        url=resource.get_url(namespace=namespace),
        logger=logger,
        settings=settings,
    )

    items: List[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
