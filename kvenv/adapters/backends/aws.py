"""AWS Secrets Manager adapter.

Every secret holds a JSON object; under a prefix each matched secret is one
shard of the environment.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, PartialCredentialsError

from kvenv.adapters.backends.base import DEFAULT_MAX_CONCURRENCY, BlockingSecretBackend
from kvenv.config.configs import DEFAULT_TIMEOUT_S, AwsConfig
from kvenv.errors.errors import (
    AuthenticationError,
    BackendError,
    SecretNotFoundError,
    TransientBackendError,
)
from kvenv.types.types import BackendFamily, SecretData

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"ResourceNotFoundException"})
_AUTH_CODES = frozenset(
    {
        "AccessDeniedException",
        "AccessDenied",
        "UnrecognizedClientException",
        "InvalidSignatureException",
        "ExpiredTokenException",
        "DecryptionFailure",
    }
)
_TRANSIENT_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "InternalServiceError",
        "InternalFailure",
        "ServiceUnavailable",
        "RequestTimeout",
    }
)


def create_client(config: AwsConfig, timeout_s: float = DEFAULT_TIMEOUT_S) -> Any:
    if config.uses_static_keys:
        session = boto3.session.Session(
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key.get_secret_value(),
            region_name=config.region,
        )
    else:
        # default credential chain: env, shared config, instance profile
        session = boto3.session.Session(region_name=config.region)
    return session.client(
        "secretsmanager",
        config=BotoConfig(connect_timeout=timeout_s, read_timeout=timeout_s),
    )


class AwsSecretsManagerBackend(BlockingSecretBackend):
    name = "aws"
    family = BackendFamily.KEY_VALUE
    dash_to_underscore = False

    def __init__(
        self,
        config: AwsConfig,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(max_concurrency)
        self._client = client if client is not None else create_client(config, timeout_s)

    def _list_names(self, prefix: str) -> Iterable[str]:
        names: list[str] = []
        try:
            paginator = self._client.get_paginator("list_secrets")
            for page in paginator.paginate(Filters=[{"Key": "name", "Values": [prefix]}]):
                for entry in page.get("SecretList", []):
                    # the name filter is a server-side hint only
                    name = entry.get("Name", "")
                    if name.startswith(prefix):
                        names.append(name)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, prefix) from exc
        return names

    def _get(self, name: str) -> SecretData:
        try:
            response = self._client.get_secret_value(SecretId=name)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, name) from exc

        if response.get("SecretString") is not None:
            return response["SecretString"]
        if response.get("SecretBinary") is not None:
            return bytes(response["SecretBinary"])
        raise SecretNotFoundError(
            "secret has no current value", backend=self.name, secret=name, component=self.name
        )

    def _translate(self, exc: Exception, secret: str) -> BackendError:
        if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
            return AuthenticationError(
                "no usable AWS credentials", backend=self.name, secret=secret, component=self.name
            )
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            details = {"code": code}
            if code in _NOT_FOUND_CODES:
                return SecretNotFoundError(
                    "secret not found", backend=self.name, secret=secret, component=self.name, details=details
                )
            if code in _AUTH_CODES:
                return AuthenticationError(
                    "access denied", backend=self.name, secret=secret, component=self.name, details=details
                )
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if code in _TRANSIENT_CODES or status >= 500:
                return TransientBackendError(
                    "AWS Secrets Manager is unavailable",
                    backend=self.name,
                    secret=secret,
                    component=self.name,
                    details=details,
                )
            return BackendError(
                f"AWS Secrets Manager request failed ({code})",
                backend=self.name,
                secret=secret,
                component=self.name,
                details=details,
            )
        # connection errors, timeouts and the rest of botocore's transport failures
        logger.debug(
            "aws_transport_error",
            extra={"event": "aws_transport_error", "error_type": type(exc).__name__},
        )
        return TransientBackendError(
            f"cannot reach AWS Secrets Manager: {type(exc).__name__}",
            backend=self.name,
            secret=secret,
            component=self.name,
        )
