from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from kvenv.errors.errors import ConfigurationError
from kvenv.types.types import SecretSelector

"""
Here, we collect all the different configs
"""

DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_CONCURRENCY = 8
AZURE_VAULT_URL_TEMPLATE = "https://{name}.vault.azure.net"


# --- Backend Section ---


class AwsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    region: str = Field(min_length=1)
    access_key_id: Optional[str] = None
    secret_access_key: Optional[SecretStr] = None

    @model_validator(mode="after")
    def _static_keys_come_in_pairs(self) -> "AwsConfig":
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ValueError("access key id and secret access key must be given together")
        return self

    @property
    def uses_static_keys(self) -> bool:
        return bool(self.access_key_id)


class AzureConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    keyvault_name: Optional[str] = None
    keyvault_url: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None

    @model_validator(mode="after")
    def _check(self) -> "AzureConfig":
        if bool(self.keyvault_name) == bool(self.keyvault_url):
            raise ValueError("exactly one of keyvault name or keyvault url must be given")
        triple = [bool(self.tenant_id), bool(self.client_id), bool(self.client_secret)]
        if any(triple) and not all(triple):
            raise ValueError("tenant id, client id and client secret must be given together")
        return self

    @property
    def vault_url(self) -> str:
        if self.keyvault_url:
            return self.keyvault_url
        return AZURE_VAULT_URL_TEMPLATE.format(name=self.keyvault_name)

    @property
    def uses_client_secret(self) -> bool:
        return bool(self.client_secret)


class GoogleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    project: str = Field(min_length=1)
    credentials_file: Optional[Path] = None
    credentials_json: Optional[SecretStr] = None

    @model_validator(mode="after")
    def _one_credential_source(self) -> "GoogleConfig":
        if self.credentials_file and self.credentials_json:
            raise ValueError("credentials file and credentials json are mutually exclusive")
        return self


class VaultConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    address: str = Field(min_length=1)
    token: SecretStr
    mount_point: str = "secret"

    @model_validator(mode="after")
    def _token_not_empty(self) -> "VaultConfig":
        if not self.token.get_secret_value():
            raise ValueError("vault token must not be empty")
        if not self.mount_point.strip("/"):
            raise ValueError("vault mount point must not be empty")
        return self


BackendConfig = Union[AwsConfig, AzureConfig, GoogleConfig, VaultConfig]


# --- Data Section ---


class DataConfig(BaseModel):
    """What to fetch and how to shape the resulting environment."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    secret_name: Optional[str] = None
    secret_prefix: Optional[str] = None
    snapshot_env: bool = False
    mask: frozenset[str] = frozenset()
    timeout_s: float = Field(default=DEFAULT_TIMEOUT_S, gt=0)
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)

    @model_validator(mode="after")
    def _name_xor_prefix(self) -> "DataConfig":
        if bool(self.secret_name) == bool(self.secret_prefix):
            raise ValueError("exactly one of secret name or secret prefix must be given")
        return self

    @property
    def selector(self) -> SecretSelector:
        return SecretSelector(secret_name=self.secret_name, secret_prefix=self.secret_prefix)


class OutputFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    output_file: Optional[Path] = None
    output_dir: Optional[Path] = None

    @model_validator(mode="after")
    def _file_xor_dir(self) -> "OutputFileConfig":
        if self.output_file is not None and self.output_dir is not None:
            raise ValueError("output file and output directory are mutually exclusive")
        return self


# --- Construction ---

ModelT = TypeVar("ModelT", bound=BaseModel)


def build_config(model: type[ModelT], **values: Any) -> ModelT:
    """
    Validate `values` into `model`, reporting failures as ConfigurationError.
    Values that are None are treated as not given.
    """
    given = {k: v for k, v in values.items() if v is not None}
    try:
        return model.model_validate(given)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", str(exc))
        # pydantic prefixes errors raised in validators with "Value error, "
        message = message.removeprefix("Value error, ")
        raise ConfigurationError(
            message,
            field=field,
            component=model.__name__,
            details={"errors_total": exc.error_count()},
        ) from None
