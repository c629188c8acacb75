"""HashiCorp Vault KV v2 adapter.

Secrets are key/value maps. A prefix such as `app/prod-` selects the
secrets directly inside `app/` whose name starts with `prod-`;
sub-directories are not descended into.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

import hvac
import requests
from hvac.exceptions import (
    BadGateway,
    Forbidden,
    InternalServerError,
    InvalidPath,
    RateLimitExceeded,
    Unauthorized,
    VaultDown,
    VaultError,
)

from kvenv.adapters.backends.base import DEFAULT_MAX_CONCURRENCY, BlockingSecretBackend
from kvenv.config.configs import DEFAULT_TIMEOUT_S, VaultConfig
from kvenv.errors.errors import (
    AuthenticationError,
    BackendError,
    SecretNotFoundError,
    TransientBackendError,
)
from kvenv.types.types import BackendFamily, SecretData

_TRANSIENT = (VaultDown, InternalServerError, RateLimitExceeded, BadGateway)


def create_client(config: VaultConfig, timeout_s: float = DEFAULT_TIMEOUT_S) -> hvac.Client:
    return hvac.Client(
        url=config.address, token=config.token.get_secret_value(), timeout=timeout_s
    )


def split_prefix(prefix: str) -> tuple[str, str]:
    """`app/prod-` -> (`app`, `prod-`); `prod-` -> (``, `prod-`)."""
    parent, _, base = prefix.rpartition("/")
    return parent, base


class VaultKvBackend(BlockingSecretBackend):
    name = "vault"
    family = BackendFamily.KEY_VALUE
    dash_to_underscore = False

    def __init__(
        self,
        config: VaultConfig,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(max_concurrency)
        self._mount_point = config.mount_point.strip("/")
        self._client = client if client is not None else create_client(config, timeout_s)

    def _list_names(self, prefix: str) -> Iterable[str]:
        parent, base = split_prefix(prefix)
        try:
            response = self._client.secrets.kv.v2.list_secrets(
                path=parent, mount_point=self._mount_point
            )
        except InvalidPath:
            # an empty or missing directory: no match
            return []
        except (VaultError, requests.exceptions.RequestException) as exc:
            raise self._translate(exc, prefix) from exc

        keys = (response or {}).get("data", {}).get("keys", [])
        return [
            f"{parent}/{key}" if parent else key
            for key in keys
            if not key.endswith("/") and key.startswith(base)
        ]

    def _get(self, name: str) -> SecretData:
        try:
            response = self._client.secrets.kv.v2.read_secret_version(
                path=name,
                mount_point=self._mount_point,
                raise_on_deleted_version=True,
            )
        except (VaultError, requests.exceptions.RequestException) as exc:
            raise self._translate(exc, name) from exc

        # KV v2 response structure: {data: {data: {key: value}, metadata: {...}}}
        data = (response or {}).get("data", {}).get("data")
        if not isinstance(data, Mapping):
            raise SecretNotFoundError(
                "secret has no data", backend=self.name, secret=name, component=self.name
            )
        return dict(data)

    def _translate(self, exc: Exception, secret: str) -> BackendError:
        kwargs = {"backend": self.name, "secret": secret, "component": self.name}
        if isinstance(exc, InvalidPath):
            return SecretNotFoundError("secret not found", **kwargs)
        if isinstance(exc, (Unauthorized, Forbidden)):
            return AuthenticationError("Vault rejected the token", **kwargs)
        if isinstance(exc, _TRANSIENT) or isinstance(exc, requests.exceptions.RequestException):
            return TransientBackendError("cannot reach Vault", **kwargs)
        return BackendError(f"Vault request failed: {type(exc).__name__}", **kwargs)
