"""
The convergence of one workload to its exposure objects.

For every workload (a deployment), a Service selecting its pods is created,
and then an Ingress routing ``/{name}`` to that Service. Both creations are
idempotent: if the object already exists, it is considered a success.
The existing objects are never updated or deleted.

The reconciler is stateless between the calls: the desired state is always
taken from the local cache, and the actual state is always in the cluster.
The errors are classified here, but the decisions on retrying are made
by the worker, not by the reconciler (see :mod:`ekspose.reactor.processing`).
"""
import asyncio
from typing import Any, Dict, Mapping, Optional

import aiohttp

from ekspose.clients import creating, errors, fetching
from ekspose.reactor import caching
from ekspose.reactor import errors as reactor_errors
from ekspose.structs import bodies, configuration, references
from ekspose.utilities import typedefs

# The errors of the API calls, which are converted to the reconciliation outcomes.
# Anything else is a bug, and goes to the worker as is.
API_ERRORS = (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError)


def build_service(
        body: bodies.RawBody,
        settings: configuration.OperatorSettings,
) -> bodies.RawBody:
    """ A Service with the workload's identity, selecting the workload's pods. """
    metadata: Mapping[str, Any] = body.get('metadata') or {}
    return {
        'apiVersion': references.SERVICES.api_version,
        'kind': references.SERVICES.kind or 'Service',
        'metadata': {
            'name': metadata['name'],
            'namespace': metadata.get('namespace'),
        },
        'spec': {
            'selector': bodies.get_selector_labels(body),
            'ports': [{
                'name': settings.exposure.port_name,
                'port': settings.exposure.port,
            }],
        },
    }


def build_ingress(
        service: bodies.RawBody,
        settings: configuration.OperatorSettings,
) -> bodies.RawBody:
    """ An Ingress with the Service's identity, routing ``/{name}`` to that Service. """
    metadata: Mapping[str, Any] = service.get('metadata') or {}
    name: str = metadata['name']
    spec: Dict[str, Any] = {
        'rules': [{
            'http': {
                'paths': [{
                    'path': f'/{name}',
                    'pathType': settings.exposure.path_type,
                    'backend': {
                        'service': {
                            'name': name,
                            'port': {'number': get_service_port(service, settings)},
                        },
                    },
                }],
            },
        }],
    }
    if settings.exposure.ingress_class is not None:
        spec['ingressClassName'] = settings.exposure.ingress_class
    return {
        'apiVersion': references.INGRESSES.api_version,
        'kind': references.INGRESSES.kind or 'Ingress',
        'metadata': {
            'name': name,
            'namespace': metadata.get('namespace'),
            'annotations': dict(settings.exposure.annotations),
        },
        'spec': spec,
    }


def get_service_port(
        service: bodies.RawBody,
        settings: configuration.OperatorSettings,
) -> int:
    """
    The port of the existing Service to route to; the configured one if unknown.

    For the Services that were created by someone else, the configured port name
    is looked up first, then the first port is used.
    """
    spec: Mapping[str, Any] = service.get('spec') or {}
    ports = list(spec.get('ports') or [])
    for port in ports:
        if port.get('name') == settings.exposure.port_name and port.get('port'):
            return int(port['port'])
    if ports and ports[0].get('port'):
        return int(ports[0]['port'])
    return settings.exposure.port


class Reconciler:

    def __init__(
            self,
            *,
            store: caching.Store,
            settings: configuration.OperatorSettings,
    ) -> None:
        super().__init__()
        self.store = store
        self.settings = settings

    async def reconcile(
            self,
            key: str,
            *,
            logger: typedefs.Logger,
    ) -> None:
        """
        Converge one workload: ensure its Service, then ensure its Ingress.

        Raises :class:`PermanentError` or :class:`TemporaryError` on failures.
        A workload absent in the cache is not a failure: there is nothing to do.
        """
        try:
            namespace, name = references.split_key(key)
        except references.InvalidKeyError as e:
            raise reactor_errors.InvalidKeyError(str(e)) from e

        body = self.store.get(namespace, name)
        if body is None:
            logger.info("The workload is gone; nothing to expose.")
            return

        service = await self.ensure_service(body, logger=logger)
        await self.ensure_ingress(service, logger=logger)

    async def ensure_service(
            self,
            body: bodies.RawBody,
            *,
            logger: typedefs.Logger,
    ) -> bodies.RawBody:
        service = build_service(body, self.settings)
        created = await self._create(references.SERVICES, service, logger=logger)

        # The Ingress needs the actual Service: either as created or as found.
        if created is None or not (created.get('metadata') or {}).get('name'):
            created = await self._read(references.SERVICES, service, logger=logger)
        return created

    async def ensure_ingress(
            self,
            service: bodies.RawBody,
            *,
            logger: typedefs.Logger,
    ) -> None:
        ingress = build_ingress(service, self.settings)
        await self._create(references.INGRESSES, ingress, logger=logger)

    async def _create(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
            *,
            logger: typedefs.Logger,
    ) -> Optional[bodies.RawBody]:
        """ Create an object; return ``None`` if it already exists. """
        what = f"{resource.kind} creation"
        try:
            created = await creating.create_obj(
                settings=self.settings,
                resource=resource,
                body=body,
                logger=logger,
            )
        except errors.APIConflictError as e:
            if not e.already_exists:
                raise reactor_errors.classify_api_error(e, what=what) from e
            logger.debug(f"{resource.kind} already exists; keeping it as is.")
            return None
        except API_ERRORS as e:
            raise reactor_errors.classify_api_error(e, what=what) from e
        else:
            logger.info(f"{resource.kind} is created.")
            return created

    async def _read(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
            *,
            logger: typedefs.Logger,
    ) -> bodies.RawBody:
        metadata: Mapping[str, Any] = body.get('metadata') or {}
        what = f"{resource.kind} reading"
        try:
            return await fetching.read_obj(
                settings=self.settings,
                resource=resource,
                namespace=metadata.get('namespace'),
                name=metadata['name'],
                logger=logger,
            )
        except errors.APINotFoundError as e:
            # It existed a moment ago, so it was deleted in between: the next attempt will create it.
            raise reactor_errors.TemporaryError(f"{resource.kind} has disappeared after creation.") from e
        except API_ERRORS as e:
            raise reactor_errors.classify_api_error(e, what=what) from e
