"""SecretBackend Port Interface.

Contract: Fetch raw secret payloads either by a single secret name or by a name
prefix. No decoding and no local mutation here; outbound calls only.
"""

from __future__ import annotations

from typing import Protocol

from kvenv.types.types import BackendFamily, RawSecretPayload


class SecretBackend(Protocol):
    name: str
    family: BackendFamily
    dash_to_underscore: bool

    async def fetch_single(self, secret_name: str) -> RawSecretPayload: ...

    """
    Fetch exactly one secret. Raises AuthenticationError, SecretNotFoundError
    or TransientBackendError; never returns an empty stand-in.
    """

    async def fetch_prefixed(self, prefix: str) -> list[RawSecretPayload]: ...

    """
    Fetch every secret whose name starts with `prefix`, ordered by secret name
    (ascending). Per-secret fetches may run concurrently; a single failure
    aborts the whole call.
    """
