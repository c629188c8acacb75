"""
Secret store adapters.

Usage:
    from kvenv.adapters.backends import create_backend
    from kvenv.config.configs import AwsConfig

    backend = create_backend(AwsConfig(region="eu-west-1"), max_concurrency=8)
    payloads = await backend.fetch_prefixed("app-")
"""

from __future__ import annotations

from kvenv.adapters.backends.aws import AwsSecretsManagerBackend
from kvenv.adapters.backends.azure import AzureKeyVaultBackend
from kvenv.adapters.backends.base import DEFAULT_MAX_CONCURRENCY, BlockingSecretBackend
from kvenv.adapters.backends.google import GoogleSecretManagerBackend
from kvenv.adapters.backends.vault import VaultKvBackend
from kvenv.config.configs import (
    DEFAULT_TIMEOUT_S,
    AwsConfig,
    AzureConfig,
    BackendConfig,
    GoogleConfig,
    VaultConfig,
)
from kvenv.errors.errors import ConfigurationError

BACKENDS: dict[type, type[BlockingSecretBackend]] = {
    AwsConfig: AwsSecretsManagerBackend,
    AzureConfig: AzureKeyVaultBackend,
    GoogleConfig: GoogleSecretManagerBackend,
    VaultConfig: VaultKvBackend,
}


def create_backend(
    config: BackendConfig,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> BlockingSecretBackend:
    """
    Instantiate the adapter matching the type of `config`.

    `timeout_s` bounds each SDK request; the pipeline deadline bounds the run.
    """
    backend_cls = BACKENDS.get(type(config))
    if backend_cls is None:
        raise ConfigurationError(
            f"no backend for configuration type {type(config).__name__}", component="backends"
        )
    return backend_cls(config, max_concurrency=max_concurrency, timeout_s=timeout_s)


__all__ = [
    "BACKENDS",
    "AwsSecretsManagerBackend",
    "AzureKeyVaultBackend",
    "BlockingSecretBackend",
    "GoogleSecretManagerBackend",
    "VaultKvBackend",
    "create_backend",
]
