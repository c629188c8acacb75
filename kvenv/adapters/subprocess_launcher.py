"""Subprocess adapter for the ProcessLauncher port."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
from typing import Any, Mapping, Optional, Sequence

from kvenv.errors.errors import LaunchError

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class SubprocessLauncher:
    """
    Runs a command with a fully replaced environment and waits for it.

    The child's environment is exactly the mapping handed to `run`; stdin,
    stdout and stderr are inherited. Signals received while waiting are passed
    on to the child, so it always terminates before `run` returns.
    """

    def __init__(self, forward_signals: bool = True) -> None:
        self._forward_signals = forward_signals

    def run(self, env: Mapping[str, str], command: Sequence[str]) -> int:
        if not command:
            raise LaunchError("no command given", component="launcher")

        program = self._resolve(command[0], env)
        child_env = dict(env)

        try:
            proc = subprocess.Popen([program, *command[1:]], env=child_env)
        except FileNotFoundError as exc:
            raise LaunchError(
                "command not found", command=command[0], component="launcher"
            ) from exc
        except PermissionError as exc:
            raise LaunchError(
                "command is not executable", command=command[0], component="launcher"
            ) from exc
        except OSError as exc:
            raise LaunchError(
                f"cannot run the specified command: {exc.strerror or exc}",
                command=command[0],
                component="launcher",
            ) from exc

        logger.info(
            "process_started",
            extra={"event": "process_started", "command": command[0], "pid": proc.pid},
        )
        status = self._wait(proc)
        logger.info(
            "process_exited",
            extra={"event": "process_exited", "command": command[0], "status": status},
        )
        return status

    def _resolve(self, program: str, env: Mapping[str, str]) -> str:
        """Look `program` up on the PATH of the environment the child will get."""
        if "/" in program:
            return program
        found = shutil.which(program, path=env.get("PATH", os.defpath))
        if found is None:
            raise LaunchError("command not found", command=program, component="launcher")
        return found

    def _wait(self, proc: subprocess.Popen) -> int:
        previous: dict[signal.Signals, Any] = {}
        if self._forward_signals and threading.current_thread() is threading.main_thread():

            def forward(signum: int, _frame: Optional[Any]) -> None:
                if proc.poll() is None:
                    proc.send_signal(signum)

            for sig in FORWARDED_SIGNALS:
                previous[sig] = signal.signal(sig, forward)
        try:
            returncode = proc.wait()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
        return exit_status(returncode)


def exit_status(returncode: int) -> int:
    """
    Map a Popen return code to a shell-style exit status.
    Negative return codes mean "killed by signal N" and become 128 + N.
    """
    if returncode < 0:
        return 128 + (-returncode)
    return returncode
