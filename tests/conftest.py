import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import pytest

from kvenv.adapters.backends.base import BlockingSecretBackend
from kvenv.types.types import BackendFamily, RawSecretPayload, SecretData


class FakeBackend:
    """
    In-memory SecretBackend.

    `secrets` maps secret name -> data. Prefixed fetches return the payloads in
    completion order of randomly delayed tasks, so callers cannot rely on the
    order they were requested in.
    """

    def __init__(
        self,
        secrets: dict[str, SecretData],
        *,
        name: str = "fake",
        family: BackendFamily = BackendFamily.KEY_VALUE,
        dash_to_underscore: bool = False,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        seed: int = 42,
    ) -> None:
        self.name = name
        self.family = family
        self.dash_to_underscore = dash_to_underscore
        self._secrets = secrets
        self._delay = delay
        self._error = error
        self._rng = random.Random(seed)
        self.calls: list[str] = []

    async def fetch_single(self, secret_name: str) -> RawSecretPayload:
        self.calls.append(secret_name)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return RawSecretPayload(name=secret_name, data=self._secrets[secret_name])

    async def fetch_prefixed(self, prefix: str) -> list[RawSecretPayload]:
        self.calls.append(prefix)
        if self._error is not None:
            raise self._error
        done: list[RawSecretPayload] = []

        async def one(name: str) -> None:
            await asyncio.sleep(self._rng.random() * 0.01 + self._delay)
            done.append(RawSecretPayload(name=name, data=self._secrets[name]))

        await asyncio.gather(*(one(n) for n in self._secrets if n.startswith(prefix)))
        return done


@dataclass
class StubTelemetry:
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def log(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [e for e, _ in self.events]


class StubBlockingBackend(BlockingSecretBackend):
    """BlockingSecretBackend over a dict, with optional per-name failures and delays."""

    name = "stub"
    family = BackendFamily.JSON_BLOB

    def __init__(
        self,
        secrets: dict[str, SecretData],
        *,
        max_concurrency: int = 8,
        failures: Optional[dict[str, Exception]] = None,
        delays: Optional[dict[str, float]] = None,
        extra_listed: Iterable[str] = (),
        on_get: Optional[Callable[[str], None]] = None,
    ) -> None:
        super().__init__(max_concurrency)
        self._secrets = secrets
        self._failures = failures or {}
        self._delays = delays or {}
        self._extra_listed = list(extra_listed)
        self._on_get = on_get
        self.fetched: list[str] = []

    def _list_names(self, prefix: str) -> Iterable[str]:
        return list(self._secrets) + self._extra_listed

    def _get(self, name: str) -> SecretData:
        if self._on_get is not None:
            self._on_get(name)
        time.sleep(self._delays.get(name, 0.0))
        if name in self._failures:
            raise self._failures[name]
        self.fetched.append(name)
        return self._secrets[name]


@pytest.fixture
def fake_backend_factory() -> Callable[..., FakeBackend]:
    return FakeBackend


@pytest.fixture
def stub_backend_factory() -> Callable[..., StubBlockingBackend]:
    return StubBlockingBackend


@pytest.fixture
def stub_telemetry() -> StubTelemetry:
    return StubTelemetry()


@pytest.fixture
def clean_environ() -> dict[str, str]:
    """A small, fully controlled base environment."""
    return {"HOME": "/h", "PATH": "/usr/bin:/bin", "FOO": "1"}
