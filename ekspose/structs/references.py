import dataclasses
import urllib.parse
from typing import List, Mapping, NewType, Optional, Tuple

# A specific really existing addressable namespace (at least, the one assumed to be so).
NamespaceName = NewType('NamespaceName', str)

# A namespace reference usable in the API calls. `None` means cluster-wide API calls.
Namespace = Optional[NamespaceName]

# A work-queue key of an object: "namespace/name" for namespaced objects, "name" otherwise.
ObjectKey = NewType('ObjectKey', str)


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A built-in resource kind, as addressed in the URLs of K8s API.

    Two resources are the same if they have the same API group, version,
    and plural name; the kind is only remembered for the bodies and logs.
    """
    group: str  # e.g. "apps"; "" for the core API.
    version: str  # e.g. "v1"
    plural: str  # e.g. "deployments"
    kind: Optional[str] = dataclasses.field(default=None, compare=False)
    namespaced: bool = True

    def __repr__(self) -> str:
        return '.'.join(part for part in (self.plural, self.version, self.group) if part)

    @property
    def api_version(self) -> str:
        """ The ``apiVersion`` field as used in the objects' bodies. """
        return f'{self.group}/{self.version}' if self.group else self.version

    @property
    def api_root(self) -> str:
        return f'/apis/{self.group}/{self.version}' if self.group else f'/api/{self.version}'

    def get_url(
            self,
            *,
            server: Optional[str] = None,
            namespace: Namespace = None,
            name: Optional[str] = None,
            params: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Build a URL of a list of objects, or of one object if the name is set.

        Without a namespace, the URL is cluster-wide: listing and watching
        are possible there, but specific namespaced objects are not addressable.
        """
        if not self.namespaced and namespace is not None:
            raise ValueError("Specific namespaces are not supported for cluster-scoped resources.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        segments: List[str] = [self.api_root]
        if namespace is not None:
            segments.extend(['namespaces', namespace])
        segments.append(self.plural)
        if name is not None:
            segments.append(name)

        url = '/'.join(segments)
        if params:
            url += '?' + urllib.parse.urlencode(params, encoding='utf-8')
        return url if server is None else f"{server.rstrip('/')}/{url.lstrip('/')}"


# The resources this controller knows about: the watched one and the derived ones.
DEPLOYMENTS = Resource('apps', 'v1', 'deployments', kind='Deployment')
SERVICES = Resource('', 'v1', 'services', kind='Service')
INGRESSES = Resource('networking.k8s.io', 'v1', 'ingresses', kind='Ingress')


class InvalidKeyError(ValueError):
    """ Raised when a work-queue key cannot be decomposed into a namespace and a name. """


def split_key(key: str) -> Tuple[Namespace, str]:
    """
    Decompose a work-queue key into a namespace (if any) and a name.

    Both ``"name"`` (cluster-scoped) and ``"namespace/name"`` are accepted.
    Anything else (empty parts, more than one separator) is an invalid key.
    """
    parts = key.split('/')
    if len(parts) == 1 and parts[0]:
        return None, parts[0]
    elif len(parts) == 2 and parts[0] and parts[1]:
        return NamespaceName(parts[0]), parts[1]
    else:
        raise InvalidKeyError(f"Unexpected key format: {key!r}")
