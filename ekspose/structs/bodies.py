"""
All the structures coming from/to the Kubernetes API.

The usage of these classes is spread over the codebase, so they are extracted
into a separate module of such type definitions.

For strict type-checking, they are detailed to the per-field level
(e.g. `TypedDict` instead of just ``Mapping[Any, Any]``) -- but only
for the fields actually used by the controller. Other fields can be present
at runtime, and are carried through as is.
"""
from typing import Any, Mapping, Optional, Union

from typing_extensions import Literal, TypedDict

from ekspose.structs import references

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

#
# Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
# from Kubernetes API, usually as retrieved in watching or fetching API calls.
# "Input" is a parsed JSON as is, while "event" is an "input" without "errors".
#

# ``None`` is used for the listing, when the pseudo-watch-stream is simulated.
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    resourceVersion: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


# As passed to the controller after processing the errors and special cases.
class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


class Tombstone(TypedDict, total=True):
    """
    A marker of an object deleted while the watch-stream was disconnected.

    The last known state of the object is kept, but it can be stale.
    """
    key: references.ObjectKey
    object: RawBody


class KeyingError(ValueError):
    """ Raised when an object has no identity to be queued by. """


def make_key(body: Union[RawBody, Tombstone]) -> references.ObjectKey:
    """
    Build a work-queue key for an object: ``"namespace/name"`` or ``"name"``.
    """
    if 'key' in body:
        return body['key']  # type: ignore
    metadata: Mapping[str, Any] = body.get('metadata') or {}
    name: Optional[str] = metadata.get('name')
    namespace: Optional[str] = metadata.get('namespace')
    if not name:
        raise KeyingError(f"The object has no name to be keyed by: {body!r}")
    key = f'{namespace}/{name}' if namespace else name
    return references.ObjectKey(key)


def get_selector_labels(body: RawBody) -> Labels:
    """ The labels of the workload's pods, which the Service should select. """
    spec: Mapping[str, Any] = body.get('spec') or {}
    template: Mapping[str, Any] = spec.get('template') or {}
    metadata: Mapping[str, Any] = template.get('metadata') or {}
    labels: Labels = metadata.get('labels') or {}
    return dict(labels)


def build_object_reference(body: RawBody) -> Mapping[str, Optional[str]]:
    """ A minimal reference to an object, as used in the logs. """
    metadata: Mapping[str, Any] = body.get('metadata') or {}
    return dict(
        apiVersion=body.get('apiVersion'),
        kind=body.get('kind'),
        name=metadata.get('name'),
        uid=metadata.get('uid'),
        namespace=metadata.get('namespace'),
    )
