"""EnvCache Port Interface.

Contract: Persist a composed environment to a file and load it back.
Single writer, single reader; no locking, no expiry, no encryption.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Protocol


class EnvCache(Protocol):
    def write(self, path: Path, env: Mapping[str, str]) -> Path: ...
    def read(self, path: Path) -> dict[str, str]: ...
    def remove(self, path: Path) -> None: ...
