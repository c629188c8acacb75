"""Telemetry Port Interface.

Contract: Log structured events. Callers pass names, counts and paths;
never secret values.
"""

from __future__ import annotations

from typing import Any, Protocol


class Telemetry(Protocol):
    def log(self, event: str, **fields: Any) -> None: ...
