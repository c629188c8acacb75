"""
Secret decoding: raw backend payloads -> ordered environment fragment.

Two modes (single secret / prefixed secrets) crossed with two backend families
(JSON blob / key-value map). Every function is pure and fails fast: the first
invalid key, disallowed value or duplicate aborts the whole fragment.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Iterable, Mapping, Optional

from kvenv.errors.errors import DecodeError
from kvenv.types.types import BackendFamily, EnvFragment, RawSecretPayload

logger = logging.getLogger(__name__)

ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# --- names ---


def is_valid_env_name(name: str) -> bool:
    return bool(ENV_NAME_RE.match(name))


def as_valid_env_name(name: str, *, secret: Optional[str] = None) -> str:
    if not isinstance(name, str) or not is_valid_env_name(name):
        raise DecodeError(
            "not a valid environment variable name",
            secret=secret,
            key=str(name),
            component="decoder",
        )
    return name


def variable_name_for(secret_name: str, prefix: str, *, dash_to_underscore: bool = False) -> str:
    """
    Derive the variable name of a prefix-matched secret.

    `prefix-my-key` with prefix `prefix-` -> `my-key`, or `my_key` when the
    backend forbids underscores in secret names and `-` stands in for them.
    """
    if not secret_name.startswith(prefix):
        raise DecodeError(
            "secret name does not start with the requested prefix",
            secret=secret_name,
            component="decoder",
            details={"prefix": prefix},
        )
    name = secret_name[len(prefix) :]
    if dash_to_underscore:
        name = name.replace("-", "_")
    return as_valid_env_name(name, secret=secret_name)


# --- values ---


def canonical_value(value: Any, *, key: str, secret: Optional[str] = None) -> str:
    """
    Canonical string form of a scalar JSON value.

    bool -> "true"/"false", None -> "", numbers -> JSON decimal form.
    Arrays and objects cannot be represented and are rejected.
    """
    # bool is a subclass of int: check it first
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, float) and not math.isfinite(value):
        raise DecodeError(
            "non-finite numbers have no JSON form", secret=secret, key=key, component="decoder"
        )
    if isinstance(value, (int, float)):
        return json.dumps(value)
    raise DecodeError(
        f"unsupported value type '{type(value).__name__}', only strings, numbers, "
        "booleans and null can be stored in the environment",
        secret=secret,
        key=key,
        component="decoder",
    )


def _reject_duplicates(secret: Optional[str]):
    def hook(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for k, v in pairs:
            if k in out:
                raise DecodeError("duplicate key in secret", secret=secret, key=k, component="decoder")
            out[k] = v
        return out

    return hook


def _reject_constant(secret: Optional[str]):
    # NaN, Infinity and -Infinity are Python extensions, not JSON
    def hook(token: str) -> Any:
        raise DecodeError(
            f"secret is not valid JSON (unexpected token '{token}')",
            secret=secret,
            component="decoder",
        )

    return hook


# --- fragments ---


def decode_key_value(mapping: Mapping[str, Any], *, secret: Optional[str] = None) -> EnvFragment:
    fragment: EnvFragment = {}
    for key, value in mapping.items():
        name = as_valid_env_name(key, secret=secret)
        fragment[name] = canonical_value(value, key=name, secret=secret)
    return fragment


def decode_json_object(text: str | bytes, *, secret: Optional[str] = None) -> EnvFragment:
    """Parse `text` as a JSON object of scalar values."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("secret is not valid UTF-8", secret=secret, component="decoder") from exc
    try:
        value = json.loads(
            text,
            object_pairs_hook=_reject_duplicates(secret),
            parse_constant=_reject_constant(secret),
        )
    except json.JSONDecodeError as exc:
        raise DecodeError(
            f"secret is not valid JSON (line {exc.lineno}, column {exc.colno})",
            secret=secret,
            component="decoder",
        ) from None
    if not isinstance(value, dict):
        raise DecodeError(
            f"secret must be a JSON object, got {type(value).__name__}",
            secret=secret,
            component="decoder",
        )
    return decode_key_value(value, secret=secret)


def decode_single(payload: RawSecretPayload, family: BackendFamily) -> EnvFragment:
    """Decode the payload of a single-secret resolution."""
    data = payload.data
    if family == BackendFamily.JSON_BLOB:
        if isinstance(data, Mapping):
            raise DecodeError(
                "expected a JSON document, got a key-value map",
                secret=payload.name,
                component="decoder",
            )
        fragment = decode_json_object(data, secret=payload.name)
    elif family == BackendFamily.KEY_VALUE:
        if isinstance(data, Mapping):
            fragment = decode_key_value(data, secret=payload.name)
        else:
            fragment = decode_json_object(data, secret=payload.name)
    else:  # pragma: no cover - exhaustive over BackendFamily
        raise DecodeError(f"unknown backend family: {family}", component="decoder")

    logger.debug(
        "secret_decoded",
        extra={"event": "secret_decoded", "secret": payload.name, "keys_total": len(fragment)},
    )
    return fragment


def decode_prefixed(
    payloads: Iterable[RawSecretPayload],
    prefix: str,
    family: BackendFamily,
    *,
    dash_to_underscore: bool = False,
) -> EnvFragment:
    """
    Decode the payloads of a prefixed resolution.

    Payloads are processed in ascending secret-name order regardless of the
    order they arrive in.
      - JSON_BLOB: one variable per secret, value taken verbatim.
      - KEY_VALUE: every secret is a map; maps are merged, later names win.
    """
    ordered = sorted(payloads, key=lambda p: p.name)
    fragment: EnvFragment = {}

    if family == BackendFamily.JSON_BLOB:
        for payload in ordered:
            name = variable_name_for(payload.name, prefix, dash_to_underscore=dash_to_underscore)
            if name in fragment:
                raise DecodeError(
                    "two secrets map to the same environment variable",
                    secret=payload.name,
                    key=name,
                    component="decoder",
                )
            data = payload.data
            if isinstance(data, Mapping):
                raise DecodeError(
                    "expected a text secret, got a key-value map",
                    secret=payload.name,
                    component="decoder",
                )
            if isinstance(data, bytes):
                try:
                    data = data.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise DecodeError(
                        "secret is not valid UTF-8", secret=payload.name, component="decoder"
                    ) from exc
            fragment[name] = data
    elif family == BackendFamily.KEY_VALUE:
        for payload in ordered:
            fragment.update(decode_single(payload, family))
    else:  # pragma: no cover - exhaustive over BackendFamily
        raise DecodeError(f"unknown backend family: {family}", component="decoder")

    logger.debug(
        "prefix_decoded",
        extra={
            "event": "prefix_decoded",
            "prefix": prefix,
            "secrets_total": len(ordered),
            "keys_total": len(fragment),
        },
    )
    return fragment
