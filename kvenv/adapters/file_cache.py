"""JSON file adapter for the EnvCache port.

The cache file is a flat UTF-8 JSON object `{"VAR": "value", ...}` readable
and writable by the owner only. Names are stored as the environment held
them; the variable-name grammar applies to secret keys only, not to the base
environment.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Mapping, Optional

import orjson

from kvenv.errors.errors import CacheError

logger = logging.getLogger(__name__)

CACHE_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600
TEMP_PREFIX = "kvenv-"
TEMP_SUFFIX = ".json"


class JsonFileEnvCache:
    """Persist composed environments as JSON files."""

    def write(self, path: Path, env: Mapping[str, str]) -> Path:
        """
        Write `env` to `path`, replacing any existing file.

        The file is created with owner-only permissions; an existing file is
        truncated and re-chmodded before anything is written to it.
        """
        path = Path(path)
        try:
            payload = orjson.dumps(dict(env), option=orjson.OPT_SORT_KEYS)
        except TypeError as exc:
            raise CacheError(
                "environment cannot be serialized", path=str(path), component="cache"
            ) from exc

        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CACHE_FILE_MODE)
            try:
                os.fchmod(fd, CACHE_FILE_MODE)
                with os.fdopen(fd, "wb") as handle:
                    fd = -1  # owned by the file object now
                    handle.write(payload)
            finally:
                if fd >= 0:
                    os.close(fd)
        except OSError as exc:
            raise CacheError(
                f"cannot store the environment file: {exc.strerror or exc}",
                path=str(path),
                component="cache",
            ) from exc

        logger.info(
            "env_cache_written",
            extra={"event": "env_cache_written", "path": str(path), "keys_total": len(env)},
        )
        return path

    def read(self, path: Path) -> dict[str, str]:
        path = Path(path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise CacheError("environment file does not exist", path=str(path), component="cache") from exc
        except OSError as exc:
            raise CacheError(
                f"cannot read the environment file: {exc.strerror or exc}",
                path=str(path),
                component="cache",
            ) from exc

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise CacheError(
                "environment file is not valid JSON", path=str(path), component="cache"
            ) from exc

        if not isinstance(data, dict):
            raise CacheError(
                "environment file must contain a JSON object", path=str(path), component="cache"
            )
        for key, value in data.items():
            if not isinstance(value, str):
                raise CacheError(
                    "environment file values must be strings",
                    path=str(path),
                    component="cache",
                    details={"key": key},
                )

        logger.info(
            "env_cache_loaded",
            extra={"event": "env_cache_loaded", "path": str(path), "keys_total": len(data)},
        )
        return data

    def create_output_path(
        self,
        output_file: Optional[Path] = None,
        output_dir: Optional[Path] = None,
    ) -> Path:
        """
        Pick the file a `cache` run writes to.

        An explicit `output_file` wins. Otherwise a new randomly named file is
        created (0o600) in `output_dir`, or in the system temp dir.
        """
        if output_file is not None:
            return Path(output_file)
        try:
            fd, name = tempfile.mkstemp(
                prefix=TEMP_PREFIX,
                suffix=TEMP_SUFFIX,
                dir=str(output_dir) if output_dir is not None else None,
            )
        except OSError as exc:
            raise CacheError(
                f"cannot create the environment file: {exc.strerror or exc}",
                path=str(output_dir) if output_dir is not None else None,
                component="cache",
            ) from exc
        os.close(fd)
        return Path(name)

    def remove(self, path: Path) -> None:
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise CacheError("environment file does not exist", path=str(path), component="cache") from exc
        except OSError as exc:
            raise CacheError(
                f"cannot remove the environment file: {exc.strerror or exc}",
                path=str(path),
                component="cache",
            ) from exc
        logger.info("env_cache_removed", extra={"event": "env_cache_removed", "path": str(path)})
