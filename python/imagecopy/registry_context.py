"""
Registry authentication and TLS contexts.

Two kinds of registry take part in a relocation:

- internal: the cluster-local registry, authenticated with the pod's
  service account bearer token
- migration: the intermediate staging registry, unauthenticated

Both relax TLS verification and refuse legacy (schema1) manifests on push.
Credentials come from an injected CredentialProvider rather than from
package-level state, so the resolvers stay pure and safe to call
concurrently.
"""

from dataclasses import dataclass
from typing import List, Optional

from imagecopy.error_utils import create_missing_token_error
from imagecopy.logging_utils import get_logger

logger = get_logger(__name__)

PLACEHOLDER_USERNAME = "ignored"


@dataclass(frozen=True)
class RegistryContext:
    kind: str
    username: Optional[str] = None
    password: Optional[str] = None
    tls_verify: bool = False
    allow_legacy_formats: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.password)

    def skopeo_args(self, side: str = "") -> List[str]:
        """Render skopeo flags for one side of a copy ("src" or "dest"), or for inspect when side is empty."""
        prefix = f"{side}-" if side else ""
        args = [f"--{prefix}tls-verify={'true' if self.tls_verify else 'false'}"]
        if self.has_credentials:
            args.extend([f"--{prefix}creds", f"{self.username or PLACEHOLDER_USERNAME}:{self.password}"])
        return args


class CredentialProvider:
    """Source of the bearer token used against the internal registry"""

    def bearer_token(self) -> Optional[str]:
        raise NotImplementedError


class StaticCredentialProvider(CredentialProvider):
    def __init__(self, token: Optional[str]):
        self._token = token

    def bearer_token(self) -> Optional[str]:
        return self._token


class KubernetesCredentialProvider(CredentialProvider):
    """Reads the service account token through the in-cluster kubernetes config."""

    def bearer_token(self) -> Optional[str]:
        from kubernetes import client as k8s_client
        from kubernetes.config import load_incluster_config

        configuration = k8s_client.Configuration()
        load_incluster_config(client_configuration=configuration)
        authorization = (configuration.api_key or {}).get("authorization", "") or ""
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer":
            authorization = token
        return authorization.strip() or None


def internal_context(credentials: CredentialProvider) -> RegistryContext:
    """Context for the cluster-local registry.

    Raises:
        ConfigurationError: no bearer token is available
    """
    try:
        token = credentials.bearer_token()
    except Exception as e:
        logger.error(f"Could not load in-cluster credentials: {e}")
        raise create_missing_token_error(e) from e
    if not token:
        raise create_missing_token_error()
    return RegistryContext(kind="internal", username=PLACEHOLDER_USERNAME, password=token)


def migration_context() -> RegistryContext:
    """Context for the intermediate migration registry."""
    return RegistryContext(kind="migration")
