"""
Resolution pipeline.

populate: fetch -> decode -> compose(base, fragment, mask) -> cache write
run-in:   fetch -> decode -> compose(base, fragment, mask) -> launch
run-with: cache read -> compose(cached, {}, mask) -> launch

Nothing reaches the cache writer or the launcher unless every step before it
succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from kvenv.adapters.telemetry.jsonl import NullTelemetry
from kvenv.config.configs import DEFAULT_TIMEOUT_S
from kvenv.core.composer import capture_environment, compose
from kvenv.core.decoder import decode_prefixed, decode_single
from kvenv.errors.errors import TransientBackendError
from kvenv.ports.backend_client import SecretBackend
from kvenv.ports.env_cache import EnvCache
from kvenv.ports.process_launcher import ProcessLauncher
from kvenv.ports.telemetry import Telemetry
from kvenv.types.types import EnvFragment, ResolutionMode, SecretSelector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolveRequest:
    """One resolution: which secrets, which base environment, which keys to drop."""

    selector: SecretSelector
    snapshot_env: bool = False
    mask: frozenset[str] = frozenset()
    timeout_s: float = DEFAULT_TIMEOUT_S


async def resolve_fragment(
    backend: SecretBackend,
    selector: SecretSelector,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> EnvFragment:
    """Fetch and decode the selected secrets under one overall deadline."""

    async def fetch_and_decode() -> EnvFragment:
        if selector.mode is ResolutionMode.SINGLE:
            payload = await backend.fetch_single(selector.identifier)
            return decode_single(payload, backend.family)
        payloads = await backend.fetch_prefixed(selector.identifier)
        return decode_prefixed(
            payloads,
            selector.identifier,
            backend.family,
            dash_to_underscore=backend.dash_to_underscore,
        )

    try:
        fragment = await asyncio.wait_for(fetch_and_decode(), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise TransientBackendError(
            f"secret resolution did not finish within {timeout_s:g}s",
            backend=backend.name,
            secret=selector.identifier,
            component="pipeline",
        ) from None

    logger.info(
        "fragment_resolved",
        extra={
            "event": "fragment_resolved",
            "backend": backend.name,
            "mode": selector.mode.value,
            "keys_total": len(fragment),
        },
    )
    return fragment


async def load_environment(
    backend: SecretBackend,
    request: ResolveRequest,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """
    Resolve the secrets and layer them over the base environment.

    With `snapshot_env` the base is captured before the first backend call,
    otherwise it is read once the fragment is available.
    """
    snapshot = capture_environment(environ) if request.snapshot_env else None
    fragment = await resolve_fragment(backend, request.selector, timeout_s=request.timeout_s)
    base = snapshot if snapshot is not None else capture_environment(environ)
    env = compose(base, fragment, request.mask)
    logger.debug(
        "environment_composed",
        extra={
            "event": "environment_composed",
            "keys_total": len(env),
            "masked_total": len(request.mask),
            "snapshot": request.snapshot_env,
        },
    )
    return env


async def populate_cache(
    backend: SecretBackend,
    request: ResolveRequest,
    cache: EnvCache,
    path: Path,
    *,
    environ: Optional[Mapping[str, str]] = None,
    telemetry: Telemetry = NullTelemetry(),
) -> Path:
    env = await load_environment(backend, request, environ=environ)
    written = cache.write(path, env)
    telemetry.log(
        "cache_populated",
        backend=backend.name,
        mode=request.selector.mode.value,
        path=str(written),
        keys_total=len(env),
    )
    return written


async def run_in(
    backend: SecretBackend,
    request: ResolveRequest,
    launcher: ProcessLauncher,
    command: Sequence[str],
    *,
    environ: Optional[Mapping[str, str]] = None,
    telemetry: Telemetry = NullTelemetry(),
) -> int:
    env = await load_environment(backend, request, environ=environ)
    telemetry.log(
        "launch_requested",
        backend=backend.name,
        mode=request.selector.mode.value,
        program=command[0] if command else None,
        keys_total=len(env),
    )
    # blocks until the child exits; nothing else is pending on the loop
    status = launcher.run(env, command)
    telemetry.log("process_exited", status=status)
    return status


def run_with(
    cache: EnvCache,
    path: Path,
    launcher: ProcessLauncher,
    command: Sequence[str],
    *,
    mask: Iterable[str] = (),
    cleanup: bool = False,
    telemetry: Telemetry = NullTelemetry(),
) -> int:
    """
    Launch `command` in a previously cached environment.

    The child sees exactly the cached variables minus `mask`. With `cleanup`
    the file is removed before the child starts.
    """
    cached = cache.read(path)
    env = compose(cached, {}, mask)
    if cleanup:
        cache.remove(path)
    telemetry.log(
        "launch_requested",
        path=str(path),
        program=command[0] if command else None,
        keys_total=len(env),
        cleanup=cleanup,
    )
    status = launcher.run(env, command)
    telemetry.log("process_exited", status=status)
    return status
