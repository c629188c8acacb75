"""
Async SecretBackend on top of a blocking SDK client.

Adapters implement two blocking primitives, `_list_names(prefix)` and
`_get(name)`. This base runs them on daemon worker threads: listing first,
then one fetch per matched secret, at most `max_concurrency` in flight. The
first failure cancels every outstanding fetch and propagates unchanged. A
cancelled fetch abandons its thread, so an expired deadline never waits for
a hung SDK call.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, TypeVar

from kvenv.errors.errors import ConfigurationError, SecretNotFoundError
from kvenv.types.types import BackendFamily, RawSecretPayload, SecretData

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8

T = TypeVar("T")


async def run_blocking(fn: Callable[..., T], *args: Any, name: str = "kvenv-worker") -> T:
    """
    Await `fn(*args)` running on its own daemon thread.

    Unlike `asyncio.to_thread`, the thread does not belong to the loop's
    default executor: cancelling the await leaves it running detached and
    neither `asyncio.run` nor interpreter exit joins it.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def settle(result: Any, exc: Any) -> None:
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def work() -> None:
        try:
            result, exc = fn(*args), None
        except Exception as err:
            result, exc = None, err
        try:
            loop.call_soon_threadsafe(settle, result, exc)
        except RuntimeError:
            # the loop closed after the caller gave up on this call
            logger.debug(
                "abandoned_worker_finished",
                extra={"event": "abandoned_worker_finished", "worker": name},
            )

    threading.Thread(target=work, name=name, daemon=True).start()
    return await future


class BlockingSecretBackend(ABC):
    name: str = "backend"
    family: BackendFamily = BackendFamily.JSON_BLOB
    dash_to_underscore: bool = False

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ConfigurationError(
                "max_concurrency must be at least 1",
                field="max_concurrency",
                component=self.name,
            )
        self._max_concurrency = max_concurrency

    # --- blocking primitives ---

    @abstractmethod
    def _list_names(self, prefix: str) -> Iterable[str]:
        """Short names of every secret starting with `prefix`."""

    @abstractmethod
    def _get(self, name: str) -> SecretData:
        """Current value of one secret."""

    # --- SecretBackend port ---

    async def fetch_single(self, secret_name: str) -> RawSecretPayload:
        data = await run_blocking(self._get, secret_name, name=f"kvenv-{self.name}")
        logger.info(
            "secret_fetched",
            extra={"event": "secret_fetched", "backend": self.name, "secret": secret_name},
        )
        return RawSecretPayload(name=secret_name, data=data)

    async def fetch_prefixed(self, prefix: str) -> list[RawSecretPayload]:
        listed = await run_blocking(self._list_names, prefix, name=f"kvenv-{self.name}")
        names = sorted({n for n in listed if n.startswith(prefix)})
        if not names:
            raise SecretNotFoundError(
                "no secret matches the prefix",
                backend=self.name,
                secret=prefix,
                component=self.name,
            )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def fetch_one(name: str) -> RawSecretPayload:
            async with semaphore:
                data = await run_blocking(self._get, name, name=f"kvenv-{self.name}")
            return RawSecretPayload(name=name, data=data)

        tasks = [asyncio.ensure_future(fetch_one(n)) for n in names]
        try:
            payloads = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        logger.info(
            "prefix_fetched",
            extra={
                "event": "prefix_fetched",
                "backend": self.name,
                "prefix": prefix,
                "secrets_total": len(payloads),
            },
        )
        return sorted(payloads, key=lambda p: p.name)
