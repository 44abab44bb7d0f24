from typing import Optional, cast

from ekspose.clients import api
from ekspose.structs import bodies, configuration, references
from ekspose.utilities import typedefs


async def create_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        body: bodies.RawBody,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Create an object from a complete body, in the namespace of its metadata.

    The created object is returned as the API server has stored it, if it was
    returned at all (it can be empty for some servers and proxies).
    """
    namespace = cast(references.Namespace, body.get('metadata', {}).get('namespace'))
    created_body: Optional[bodies.RawBody] = await api.post(
        url=resource.get_url(namespace=namespace),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return created_body
