"""Azure Key Vault adapter.

Key Vault secret names may only contain letters, digits and dashes, so
variable names derived from a prefix translate `-` to `_`.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import (
    AzureCliCredential,
    ChainedTokenCredential,
    ClientSecretCredential,
    ManagedIdentityCredential,
)
from azure.keyvault.secrets import SecretClient

from kvenv.adapters.backends.base import DEFAULT_MAX_CONCURRENCY, BlockingSecretBackend
from kvenv.config.configs import DEFAULT_TIMEOUT_S, AzureConfig
from kvenv.errors.errors import (
    AuthenticationError,
    BackendError,
    SecretNotFoundError,
    TransientBackendError,
)
from kvenv.types.types import BackendFamily, SecretData


def create_credential(config: AzureConfig) -> Any:
    if config.uses_client_secret:
        return ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret.get_secret_value(),
        )
    return ChainedTokenCredential(ManagedIdentityCredential(), AzureCliCredential())


def create_client(config: AzureConfig, timeout_s: float = DEFAULT_TIMEOUT_S) -> SecretClient:
    return SecretClient(
        vault_url=config.vault_url,
        credential=create_credential(config),
        connection_timeout=timeout_s,
        read_timeout=timeout_s,
    )


class AzureKeyVaultBackend(BlockingSecretBackend):
    name = "azure"
    family = BackendFamily.JSON_BLOB
    dash_to_underscore = True

    def __init__(
        self,
        config: AzureConfig,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(max_concurrency)
        self._client = client if client is not None else create_client(config, timeout_s)

    def _list_names(self, prefix: str) -> Iterable[str]:
        try:
            return [
                props.name
                for props in self._client.list_properties_of_secrets()
                # disabled secrets cannot be read
                if props.name.startswith(prefix) and props.enabled is not False
            ]
        except AzureError as exc:
            raise self._translate(exc, prefix) from exc

    def _get(self, name: str) -> SecretData:
        try:
            secret = self._client.get_secret(name)
        except AzureError as exc:
            raise self._translate(exc, name) from exc
        if secret.value is None:
            raise SecretNotFoundError(
                "secret has no value", backend=self.name, secret=name, component=self.name
            )
        return secret.value

    def _translate(self, exc: AzureError, secret: str) -> BackendError:
        kwargs = {"backend": self.name, "secret": secret, "component": self.name}
        if isinstance(exc, ResourceNotFoundError):
            return SecretNotFoundError("secret not found", **kwargs)
        if isinstance(exc, ClientAuthenticationError):
            return AuthenticationError("authentication with Azure failed", **kwargs)
        if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
            return TransientBackendError("cannot reach Azure Key Vault", **kwargs)
        if isinstance(exc, HttpResponseError):
            status = exc.status_code or 0
            kwargs["details"] = {"status": status}
            if status in (401, 403):
                return AuthenticationError("access to Azure Key Vault denied", **kwargs)
            if status == 404:
                return SecretNotFoundError("secret not found", **kwargs)
            if status == 429 or status >= 500:
                return TransientBackendError("Azure Key Vault is unavailable", **kwargs)
        return BackendError(f"Azure Key Vault request failed: {type(exc).__name__}", **kwargs)
