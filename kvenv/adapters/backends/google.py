"""Google Secret Manager adapter."""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from google.api_core import exceptions as gexc
from google.auth import exceptions as auth_exc
from google.cloud import secretmanager
from google.oauth2 import service_account

from kvenv.adapters.backends.base import DEFAULT_MAX_CONCURRENCY, BlockingSecretBackend
from kvenv.config.configs import DEFAULT_TIMEOUT_S, GoogleConfig
from kvenv.errors.errors import (
    AuthenticationError,
    BackendError,
    ConfigurationError,
    DecodeError,
    SecretNotFoundError,
    TransientBackendError,
)
from kvenv.types.types import BackendFamily, SecretData

_TRANSIENT = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.TooManyRequests,
    gexc.ResourceExhausted,
    gexc.InternalServerError,
    gexc.RetryError,
    auth_exc.TransportError,
)


def short_secret_name(resource_name: str) -> str:
    """`projects/p/secrets/NAME` -> `NAME`; plain names pass through."""
    _, sep, tail = resource_name.rpartition("/secrets/")
    return tail if sep else resource_name


def load_credentials(config: GoogleConfig) -> Optional[Any]:
    """Service account credentials from a file or a JSON string; None means application default."""
    try:
        if config.credentials_file is not None:
            return service_account.Credentials.from_service_account_file(str(config.credentials_file))
        if config.credentials_json is not None:
            info = json.loads(config.credentials_json.get_secret_value())
            return service_account.Credentials.from_service_account_info(info)
    except (OSError, ValueError) as exc:
        # json.JSONDecodeError is a ValueError, so is a malformed key file
        raise ConfigurationError(
            "cannot load the Google service account credentials",
            field="credentials_file" if config.credentials_file is not None else "credentials_json",
            component="google",
        ) from exc
    return None


def create_client(config: GoogleConfig) -> Any:
    try:
        return secretmanager.SecretManagerServiceClient(credentials=load_credentials(config))
    except auth_exc.DefaultCredentialsError as exc:
        raise AuthenticationError(
            "no Google application default credentials found", backend="google", component="google"
        ) from exc


class GoogleSecretManagerBackend(BlockingSecretBackend):
    name = "google"
    family = BackendFamily.JSON_BLOB
    dash_to_underscore = False

    def __init__(
        self,
        config: GoogleConfig,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(max_concurrency)
        self._project = config.project
        self._timeout_s = timeout_s
        self._client = client if client is not None else create_client(config)

    @property
    def parent(self) -> str:
        return f"projects/{self._project}"

    def _list_names(self, prefix: str) -> Iterable[str]:
        try:
            listed = self._client.list_secrets(
                request={"parent": self.parent}, timeout=self._timeout_s
            )
            names = [short_secret_name(s.name) for s in listed]
        except (gexc.GoogleAPIError, auth_exc.GoogleAuthError) as exc:
            raise self._translate(exc, prefix) from exc
        return [n for n in names if n.startswith(prefix)]

    def _get(self, name: str) -> SecretData:
        version = f"{self.parent}/secrets/{short_secret_name(name)}/versions/latest"
        try:
            response = self._client.access_secret_version(
                request={"name": version}, timeout=self._timeout_s
            )
        except (gexc.GoogleAPIError, auth_exc.GoogleAuthError) as exc:
            raise self._translate(exc, name) from exc
        try:
            return bytes(response.payload.data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("secret is not valid UTF-8", secret=name, component=self.name) from exc

    def _translate(self, exc: Exception, secret: str) -> BackendError:
        kwargs = {"backend": self.name, "secret": secret, "component": self.name}
        if isinstance(exc, gexc.NotFound):
            return SecretNotFoundError("secret not found", **kwargs)
        if isinstance(exc, (gexc.PermissionDenied, gexc.Unauthenticated, auth_exc.RefreshError)):
            return AuthenticationError("access to Google Secret Manager denied", **kwargs)
        if isinstance(exc, _TRANSIENT):
            return TransientBackendError("Google Secret Manager is unavailable", **kwargs)
        return BackendError(f"Google Secret Manager request failed: {type(exc).__name__}", **kwargs)
