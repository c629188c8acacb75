"""kvenv CLI entrypoint.

Subcommands:
  cache     fetch secrets, compose the environment and store it in a file
  run-in    fetch secrets and run a command inside the composed environment
  run-with  run a command inside a previously cached environment
  cleanup   delete a cache file

Backend options fall back to the conventional environment variables of each
secret store; the secret selection falls back to KVENV_SECRET_NAME /
KVENV_SECRET_PREFIX.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from kvenv.adapters.backends import create_backend
from kvenv.adapters.file_cache import JsonFileEnvCache
from kvenv.adapters.subprocess_launcher import SubprocessLauncher
from kvenv.adapters.telemetry.jsonl import JsonlTelemetry, NullTelemetry
from kvenv.config.configs import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_TIMEOUT_S,
    AwsConfig,
    AzureConfig,
    BackendConfig,
    DataConfig,
    GoogleConfig,
    OutputFileConfig,
    VaultConfig,
    build_config,
)
from kvenv.core import pipeline
from kvenv.errors.errors import ConfigurationError, KvenvError
from kvenv.ports.telemetry import Telemetry

logger = logging.getLogger(__name__)

ENV_PREFIX = "KVENV_"
INTERRUPTED_STATUS = 130

# option dest -> environment variable it falls back to
ENV_FALLBACKS: dict[str, str] = {
    "secret_name": f"{ENV_PREFIX}SECRET_NAME",
    "secret_prefix": f"{ENV_PREFIX}SECRET_PREFIX",
    "aws_access_key_id": "AWS_ACCESS_KEY_ID",
    "aws_secret_access_key": "AWS_SECRET_ACCESS_KEY",
    "aws_region": "AWS_REGION",
    "azure_tenant_id": "AZURE_TENANT_ID",
    "azure_client_id": "AZURE_CLIENT_ID",
    "azure_client_secret": "AZURE_CLIENT_SECRET",
    "azure_keyvault_name": "AZURE_KEYVAULT_NAME",
    "azure_keyvault_url": "AZURE_KEYVAULT_URL",
    "google_credentials_file": "GOOGLE_APPLICATION_CREDENTIALS",
    "google_credentials_json": "GOOGLE_APPLICATION_CREDENTIALS_JSON",
    "google_project": "GOOGLE_PROJECT",
    "vault_addr": "VAULT_ADDR",
    "vault_token": "VAULT_TOKEN",
    "vault_mount": "VAULT_MOUNT",
}


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(
        prog="kvenv", description="Run commands with secrets from a secret store as environment"
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    p.add_argument("--events-file", type=Path, help="Append structured JSONL events to this file")
    sub = p.add_subparsers(dest="subcommand", required=True)

    def add_backend(sp: argparse.ArgumentParser) -> None:
        """Backend selection and per-backend connection options."""
        which = sp.add_mutually_exclusive_group(required=True)
        which.add_argument("--aws", dest="backend", action="store_const", const="aws")
        which.add_argument("--azure", dest="backend", action="store_const", const="azure")
        which.add_argument("--google", dest="backend", action="store_const", const="google")
        which.add_argument("--vault", dest="backend", action="store_const", const="vault")

        aws = sp.add_argument_group("AWS Secrets Manager")
        aws.add_argument("--aws-access-key-id")
        aws.add_argument("--aws-secret-access-key")
        aws.add_argument("--aws-region")

        azure = sp.add_argument_group("Azure Key Vault")
        azure.add_argument("--azure-tenant-id")
        azure.add_argument("--azure-client-id")
        azure.add_argument("--azure-client-secret")
        azure.add_argument("--azure-keyvault-name")
        azure.add_argument("--azure-keyvault-url")

        google = sp.add_argument_group("Google Secret Manager")
        google.add_argument("--google-credentials-file", type=Path)
        google.add_argument("--google-credentials-json")
        google.add_argument("--google-project")

        vault = sp.add_argument_group("HashiCorp Vault")
        vault.add_argument("--vault-addr")
        vault.add_argument("--vault-token")
        vault.add_argument("--vault-mount")

    def add_data(sp: argparse.ArgumentParser) -> None:
        """Which secrets to fetch and how to compose the environment."""
        sel = sp.add_mutually_exclusive_group()
        sel.add_argument("-n", "--secret-name", help="Name of a single secret")
        sel.add_argument("-s", "--secret-prefix", help="Prefix selecting several secrets")
        sp.add_argument(
            "-e",
            "--snapshot-env",
            action="store_true",
            help="Capture the environment before contacting the backend",
        )
        add_mask(sp)
        sp.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_S, help="Overall deadline (s)")
        sp.add_argument("--max-concurrency", type=int, default=DEFAULT_MAX_CONCURRENCY)

    def add_mask(sp: argparse.ArgumentParser) -> None:
        sp.add_argument(
            "-m",
            "--mask",
            action="append",  # builds a Python list containing each masked name
            default=[],
            metavar="VAR",
            help="Drop this variable from the environment (may be repeated)",
        )

    def add_command(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("command", nargs=argparse.REMAINDER, metavar="-- COMMAND ...")

    # cache
    cache = sub.add_parser("cache", help="Store the composed environment in a file")
    add_backend(cache)
    add_data(cache)
    out = cache.add_mutually_exclusive_group()
    out.add_argument("-f", "--output-file", type=Path, help="Write to this file")
    out.add_argument("-d", "--output-dir", type=Path, help="Create a random file in this directory")

    # run-in
    run_in = sub.add_parser("run-in", help="Run a command with freshly fetched secrets")
    add_backend(run_in)
    add_data(run_in)
    add_command(run_in)

    # run-with
    run_with = sub.add_parser("run-with", help="Run a command in a cached environment")
    run_with.add_argument("-e", "--env-file", type=Path, required=True, help="Cache file to use")
    run_with.add_argument(
        "-c", "--cleanup", action="store_true", help="Delete the cache file before launching"
    )
    add_mask(run_with)
    add_command(run_with)

    # cleanup
    cleanup = sub.add_parser("cleanup", help="Delete a cache file")
    cleanup.add_argument("file", type=Path)
    return p


def _with_env_fallbacks(args: argparse.Namespace, environ: Mapping[str, str]) -> dict[str, Any]:
    """Option values, with unset options taken from the environment."""
    values = dict(vars(args))
    # an explicit selector on the command line disables both selector variables
    selector_given = bool(values.get("secret_name") or values.get("secret_prefix"))
    for dest, var in ENV_FALLBACKS.items():
        if selector_given and dest in ("secret_name", "secret_prefix"):
            continue
        if dest in values and values[dest] is None and environ.get(var):
            values[dest] = environ[var]
    return values


def backend_config(values: Mapping[str, Any]) -> BackendConfig:
    backend = values["backend"]
    if backend == "aws":
        return build_config(
            AwsConfig,
            region=values["aws_region"],
            access_key_id=values["aws_access_key_id"],
            secret_access_key=values["aws_secret_access_key"],
        )
    if backend == "azure":
        return build_config(
            AzureConfig,
            keyvault_name=values["azure_keyvault_name"],
            keyvault_url=values["azure_keyvault_url"],
            tenant_id=values["azure_tenant_id"],
            client_id=values["azure_client_id"],
            client_secret=values["azure_client_secret"],
        )
    if backend == "google":
        return build_config(
            GoogleConfig,
            project=values["google_project"],
            credentials_file=values["google_credentials_file"],
            credentials_json=values["google_credentials_json"],
        )
    if backend == "vault":
        return build_config(
            VaultConfig,
            address=values["vault_addr"],
            token=values["vault_token"],
            mount_point=values["vault_mount"],
        )
    raise ConfigurationError(f"unknown backend: {backend}", field="backend", component="cli")


def data_config(values: Mapping[str, Any]) -> DataConfig:
    return build_config(
        DataConfig,
        secret_name=values["secret_name"],
        secret_prefix=values["secret_prefix"],
        snapshot_env=values["snapshot_env"],
        mask=values["mask"],
        timeout_s=values["timeout"],
        max_concurrency=values["max_concurrency"],
    )


def _request(data: DataConfig) -> pipeline.ResolveRequest:
    return pipeline.ResolveRequest(
        selector=data.selector,
        snapshot_env=data.snapshot_env,
        mask=data.mask,
        timeout_s=data.timeout_s,
    )


def _command(args: argparse.Namespace) -> list[str]:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise ConfigurationError("a command to run is required", field="command", component="cli")
    return command


def run_cache(values: Mapping[str, Any], environ: Optional[Mapping[str, str]], telemetry: Telemetry) -> int:
    backend_cfg = backend_config(values)
    data = data_config(values)
    out = build_config(
        OutputFileConfig, output_file=values["output_file"], output_dir=values["output_dir"]
    )
    backend = create_backend(
        backend_cfg, max_concurrency=data.max_concurrency, timeout_s=data.timeout_s
    )
    cache = JsonFileEnvCache()

    path = cache.create_output_path(out.output_file, out.output_dir)
    try:
        written = asyncio.run(
            pipeline.populate_cache(
                backend, _request(data), cache, path, environ=environ, telemetry=telemetry
            )
        )
    except BaseException:
        # a random file created above must not outlive a failed run
        if out.output_file is None:
            path.unlink(missing_ok=True)
        raise
    print(written)
    return 0


def run_in(
    values: Mapping[str, Any],
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]],
    telemetry: Telemetry,
) -> int:
    command = _command(args)
    backend_cfg = backend_config(values)
    data = data_config(values)
    backend = create_backend(
        backend_cfg, max_concurrency=data.max_concurrency, timeout_s=data.timeout_s
    )
    return asyncio.run(
        pipeline.run_in(
            backend,
            _request(data),
            SubprocessLauncher(),
            command,
            environ=environ,
            telemetry=telemetry,
        )
    )


def run_with(args: argparse.Namespace, telemetry: Telemetry) -> int:
    command = _command(args)
    return pipeline.run_with(
        JsonFileEnvCache(),
        args.env_file,
        SubprocessLauncher(),
        command,
        mask=frozenset(args.mask),
        cleanup=args.cleanup,
        telemetry=telemetry,
    )


def run_cleanup(args: argparse.Namespace, telemetry: Telemetry) -> int:
    JsonFileEnvCache().remove(args.file)
    telemetry.log("cache_removed", path=str(args.file))
    return 0


def configure_logging(verbosity: int) -> None:
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main(argv: Sequence[str] | None = None, environ: Optional[Mapping[str, str]] = None) -> int:
    """CLI entrypoint wrapper compatible with setuptools scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    telemetry: Telemetry = (
        JsonlTelemetry(run_id=str(uuid.uuid4()), sink_path=args.events_file, command=args.subcommand)
        if args.events_file
        else NullTelemetry()
    )
    telemetry.log("cli_invocation", subcommand=args.subcommand)

    lookup = os.environ if environ is None else environ
    values = _with_env_fallbacks(args, lookup)

    try:
        if args.subcommand == "cache":
            return run_cache(values, environ, telemetry)
        if args.subcommand == "run-in":
            return run_in(values, args, environ, telemetry)
        if args.subcommand == "run-with":
            return run_with(args, telemetry)
        if args.subcommand == "cleanup":
            return run_cleanup(args, telemetry)
        raise ConfigurationError(f"unknown subcommand: {args.subcommand}", component="cli")
    except KvenvError as exc:
        logger.debug(
            "command_failed",
            extra={"event": "command_failed", "error_type": type(exc).__name__},
            exc_info=True,
        )
        telemetry.log(
            "command_failed", error_type=type(exc).__name__, exit_code=int(exc.exit_code)
        )
        print(f"kvenv: error: {exc}", file=sys.stderr)
        return int(exc.exit_code)
    except KeyboardInterrupt:
        telemetry.log("command_interrupted")
        return INTERRUPTED_STATUS


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
