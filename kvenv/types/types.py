"""
define canonical types
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from kvenv.errors.errors import ConfigurationError

# -------- Aliases (clarify intent) --------
VarName = str
EnvMapping = Mapping[str, str]
EnvFragment = dict[str, str]  # ordered, no duplicate keys
SecretData = Union[str, bytes, Mapping[str, Any]]

# -------- Enums --------


class BackendFamily(str, Enum):
    """How a backend represents one secret."""

    JSON_BLOB = "json_blob"  # one opaque string per secret, JSON object in single mode
    KEY_VALUE = "key_value"  # one flat key/value map per secret


class ResolutionMode(str, Enum):
    SINGLE = "single"
    PREFIXED = "prefixed"


# -------- Secret identifiers and payloads --------


@dataclass(frozen=True)
class SecretSelector:
    """
    Either a single secret name or a prefix, never both.
    """

    secret_name: Optional[str] = None
    secret_prefix: Optional[str] = None

    def __post_init__(self) -> None:
        has_name = bool(self.secret_name)
        has_prefix = bool(self.secret_prefix)
        if has_name == has_prefix:
            raise ConfigurationError(
                "exactly one of secret name or secret prefix must be given",
                field="secret_name" if not has_name else "secret_prefix",
            )

    @property
    def mode(self) -> ResolutionMode:
        return ResolutionMode.SINGLE if self.secret_name else ResolutionMode.PREFIXED

    @property
    def identifier(self) -> str:
        """The name or the prefix, whichever is set."""
        return self.secret_name or self.secret_prefix or ""


@dataclass(frozen=True, slots=True)
class RawSecretPayload:
    """Secret as delivered by a backend, before decoding."""

    name: str  # short secret name (no project / vault path decoration)
    data: SecretData

    def __repr__(self) -> str:
        # keep secret material out of tracebacks and debug logs
        kind = "map" if isinstance(self.data, Mapping) else "text"
        return f"RawSecretPayload(name={self.name!r}, data=<{kind}>)"
