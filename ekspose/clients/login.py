"""
Minimalistic authentication with the cluster: in-cluster or via kubeconfig.

Authentication capabilities are limited to keep the code short & simple.
No parsing or sophisticated multi-step token retrieval is performed:
only the tokens, certificates, and basic credentials are supported
as they are stored in the service account's files or in kubeconfigs.
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml

from ekspose.structs import credentials

logger = logging.getLogger(__name__)

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'


def login(
        *,
        kubeconfig: Optional[str] = None,
) -> credentials.ConnectionInfo:
    """
    Detect the credentials: either the explicit kubeconfig, or the in-cluster
    service account, or the implicit kubeconfig (``$KUBECONFIG``, ``~/.kube/config``).
    """
    info: Optional[credentials.ConnectionInfo] = None
    if kubeconfig:
        info = login_with_kubeconfig(kubeconfig=kubeconfig)
    if info is None:
        info = login_with_service_account()
    if info is None:
        info = login_with_kubeconfig()
    if info is None:
        raise credentials.LoginError("Cannot authenticate neither in-cluster, nor via kubeconfig.")
    logger.debug(f"Using the API server at {info.server}")
    return info


def login_with_service_account(
        *,
        root: str = SERVICE_ACCOUNT_DIR,
) -> Optional[credentials.ConnectionInfo]:
    """
    A minimalistic login handler that can get raw data from a service account.
    """
    token_path = os.path.join(root, 'token')
    ns_path = os.path.join(root, 'namespace')
    ca_path = os.path.join(root, 'ca.crt')

    if os.path.exists(token_path):
        with open(token_path, encoding='utf-8') as f:
            token = f.read().strip()

        namespace: Optional[str] = None
        if os.path.exists(ns_path):
            with open(ns_path, encoding='utf-8') as f:
                namespace = f.read().strip()

        logger.debug("Authenticating in-cluster with the service account.")
        return credentials.ConnectionInfo(
            server='https://kubernetes.default.svc',
            ca_path=ca_path if os.path.exists(ca_path) else None,
            token=token or None,
            default_namespace=namespace or None,
        )
    else:
        return None


def login_with_kubeconfig(
        *,
        kubeconfig: Optional[str] = None,
) -> Optional[credentials.ConnectionInfo]:
    """
    A minimalistic login handler that can get raw data from a kubeconfig file.

    Several files can be specified in ``$KUBECONFIG`` separated by the OS's path
    separator; the first value found for every name wins (as in kubectl).
    """

    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    kubeconfig = kubeconfig or os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser('~/.kube/config')):
        kubeconfig = '~/.kube/config'
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: Optional[str] = None
    contexts: Dict[Any, Any] = {}
    clusters: Dict[Any, Any] = {}
    users: Dict[Any, Any] = {}
    for path in paths:

        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f.read()) or {}

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts', []):
            if item['name'] not in contexts:
                contexts[item['name']] = item.get('context') or {}
        for item in config.get('clusters', []):
            if item['name'] not in clusters:
                clusters[item['name']] = item.get('cluster') or {}
        for item in config.get('users', []):
            if item['name'] not in users:
                users[item['name']] = item.get('user') or {}

    # Once fully parsed, use the current context only.
    if current_context is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    try:
        context = contexts[current_context]
        cluster = clusters[context['cluster']]
        user = users.get(context.get('user'), {})
    except KeyError as e:
        raise credentials.LoginError(f"Inconsistent kubeconfig: {e} is not defined.") from e

    # Auth-providers are not run, but their last cached token is used if there is no other one.
    provider_token = user.get('auth-provider', {}).get('config', {}).get('access-token')

    # Map the retrieved fields into the credentials object.
    logger.debug(f"Authenticating via kubeconfig with the context {current_context!r}.")
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=context.get('namespace'),
    )
