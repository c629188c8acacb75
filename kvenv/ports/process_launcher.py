"""ProcessLauncher Port Interface.

Contract: Run a command inside exactly the given environment, inherit stdio,
block until it terminates and return its exit status.
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence


class ProcessLauncher(Protocol):
    def run(self, env: Mapping[str, str], command: Sequence[str]) -> int: ...

    """
    The child does not inherit the launcher's own environment, only `env`.
    Raises LaunchError when the command cannot be started; a child that
    started and failed is reported through the returned status instead.
    """
