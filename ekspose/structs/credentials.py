"""
Connection credentials for the Kubernetes API, as discovered at startup.

Only the things that a generic HTTP client understands are supported:
the server URL, the TLS settings (the CA, the client certificate & key,
or no verification at all), and the ``Authorization`` header (a token
with its scheme, or a username & password for the basic auth).
Exec-based & provider-based kubeconfig users are not supported.

The credentials are discovered in :mod:`ekspose.clients.login`,
and turned into an HTTP session in :mod:`ekspose.clients.auth`.
"""
import dataclasses
from typing import Optional, Union


class LoginError(Exception):
    """ Raised when the controller cannot discover the credentials. """


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    server: str  # e.g. "https://kubernetes.default.svc"
    ca_path: Optional[str] = None
    ca_data: Optional[Union[str, bytes]] = None  # PEM or base64-encoded PEM
    insecure: Optional[bool] = None
    username: Optional[str] = None
    password: Optional[str] = None
    scheme: Optional[str] = None  # e.g. "Digest"; tokens are "Bearer" by default
    token: Optional[str] = None
    certificate_path: Optional[str] = None
    certificate_data: Optional[Union[str, bytes]] = None
    private_key_path: Optional[str] = None
    private_key_data: Optional[Union[str, bytes]] = None
    default_namespace: Optional[str] = None
