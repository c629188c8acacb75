"""JSON Lines Telemetry adapter.

Implements the Telemetry port by appending one structured JSON object per
event to a file. Fields whose name looks like secret material are redacted
before anything reaches disk.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

import orjson


class JsonlTelemetry:
    _REDACTION_TOKEN = "***REDACTED***"
    _DEFAULT_SECRET_KEYS = frozenset(
        {
            "value",
            "values",
            "secret_value",
            "client_secret",
            "aws_secret_access_key",
            "token",
            "vault_token",
            "password",
            "credentials_json",
        }
    )

    def __init__(
        self,
        run_id: str,
        sink_path: Path,
        command: str,
        secret_keys: Iterable[str] = _DEFAULT_SECRET_KEYS,
    ) -> None:
        self._run_id = run_id
        self._sink_path = sink_path if isinstance(sink_path, Path) else Path(sink_path)
        self._command = command
        self._pid = os.getpid()
        self._secret_keys = frozenset(secret_keys)

    def log(self, event: str, **fields: Any) -> None:
        sanitized_fields, redacted = self._sanitize_fields(fields)

        record: dict[str, Any] = {
            "run_id": self._run_id,
            "event": event,
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "command": self._command,
            "pid": self._pid,
            **sanitized_fields,
        }
        if redacted:
            record["redacted_fields"] = sorted(redacted)

        self._write_record(record)

    def _sanitize_fields(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], set[str]]:
        sanitized: dict[str, Any] = {}
        redacted: set[str] = set()
        for key, value in fields.items():
            if key in self._secret_keys:
                sanitized[key] = self._REDACTION_TOKEN
                redacted.add(key)
            else:
                sanitized[key] = value

        return sanitized, redacted

    def _write_record(self, record: Mapping[str, Any]) -> None:
        payload = orjson.dumps(record, default=str, option=orjson.OPT_SORT_KEYS)
        with self._sink_path.open("ab") as handle:
            handle.write(payload + b"\n")


class NullTelemetry:
    """Telemetry sink that drops every event."""

    def log(self, event: str, **fields: Any) -> None:
        return None
