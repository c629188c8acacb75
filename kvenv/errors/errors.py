"""
Exceptions raised while resolving, caching and launching an environment.

Exception hierarchy:
- KvenvError (base)
  - ConfigurationError: invalid or contradictory options
  - BackendError: the secret store could not deliver the secrets
    - AuthenticationError: credentials rejected or missing permissions
    - SecretNotFoundError: secret name or prefix does not exist
    - TransientBackendError: network, throttling, server-side failures, deadline
  - DecodeError: payload cannot be turned into environment variables
  - CacheError: cache file missing, corrupt or not writable
  - LaunchError: the target command could not be started

Every class maps to a distinct process exit status (see ExitCode).
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class ExitCode(IntEnum):
    """Process exit statuses used by the CLI."""

    OK = 0
    CONFIGURATION_ERROR = 2
    BACKEND_ERROR = 3
    DECODE_ERROR = 4
    CACHE_ERROR = 5
    LAUNCH_ERROR = 6


class KvenvError(Exception):
    """Base exception for all kvenv errors."""

    exit_code: ExitCode = ExitCode.CONFIGURATION_ERROR

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class ConfigurationError(KvenvError):
    """Raised when configuration is invalid."""

    exit_code = ExitCode.CONFIGURATION_ERROR

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, component=component, details=details)


# --- Backend ---


class BackendError(KvenvError):
    """Raised when a secret store call fails."""

    exit_code = ExitCode.BACKEND_ERROR

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        secret: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.backend = backend
        self.secret = secret
        details = details or {}
        if backend:
            details["backend"] = backend
        if secret:
            details["secret"] = secret
        super().__init__(message, component=component, details=details)


class AuthenticationError(BackendError):
    """Raised when the backend rejects the credentials or denies access."""


class SecretNotFoundError(BackendError):
    """Raised when the secret (or every secret under a prefix) does not exist."""


class TransientBackendError(BackendError):
    """Raised for network failures, throttling, server errors and deadlines."""


# --- Decode ---


class DecodeError(KvenvError):
    """Raised when a payload cannot be decoded into an environment fragment."""

    exit_code = ExitCode.DECODE_ERROR

    def __init__(
        self,
        message: str,
        *,
        secret: Optional[str] = None,
        key: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.secret = secret
        self.key = key
        details = details or {}
        if secret:
            details["secret"] = secret
        if key is not None:
            details["key"] = key
        # Never include the offending value, it may be a secret
        super().__init__(message, component=component, details=details)


# --- Cache ---


class CacheError(KvenvError):
    """Raised when the cache file cannot be written, read or removed."""

    exit_code = ExitCode.CACHE_ERROR

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = path
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(message, component=component, details=details)


# --- Launch ---


class LaunchError(KvenvError):
    """Raised when the target command cannot be started at all."""

    exit_code = ExitCode.LAUNCH_ERROR

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.command = command
        details = details or {}
        if command:
            details["command"] = command
        super().__init__(message, component=component, details=details)
