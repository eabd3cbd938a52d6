"""Command line front end: ``python -m dbgateway``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .config import CONFIG_FILE, GatewayConfig, load_config
from .errors import ConnectionEstablishError, GatewayError
from .gateway import DatabaseGateway, EstablishRequest
from .models import Dialect, PipelineMode, SyncStatus
from .snapshot import descriptor_to_json, watermark_to_json

LOG = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dbgateway", description="Database gateway and incremental sync engine")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Path to the TOML config file")
    parser.add_argument("--state-file", type=Path, help="Override the JSON state file")
    parser.add_argument("--index-file", type=Path, help="Override the JSON Lines index file")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    parser.add_argument("--demo", action="store_true", help="Serve bundled demo tables instead of real databases")
    commands = parser.add_subparsers(dest="command", required=True)

    connect = commands.add_parser("connect", help="Register a database and capture its snapshot")
    connect.add_argument("uri", help="Connection URI")
    connect.add_argument("--dialect", choices=[item.value for item in Dialect], required=True)
    connect.add_argument("--id", dest="connection_id", help="Connection id (generated when omitted)")
    connect.add_argument("--name", dest="display_name", help="Display name")
    connect.add_argument("--owner", dest="owner_id", help="Owning user id")
    connect.add_argument("--schema-only", action="store_true", help="Capture schema without data samples")

    sync = commands.add_parser("sync", help="Re-sync tables whose row count grew")
    sync.add_argument("connection_id")

    query = commands.add_parser("query", help="Execute a statement ('-' reads it from stdin)")
    query.add_argument("connection_id")
    query.add_argument("text")

    delete = commands.add_parser("delete", help="Forget a connection and its watermarks")
    delete.add_argument("connection_id")

    show = commands.add_parser("show", help="List connections or show one in detail")
    show.add_argument("connection_id", nargs="?")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GatewayConfig:
    config = load_config(args.config)
    return config.with_overrides(
        state_file=args.state_file,
        index_file=args.index_file,
        log_level=args.log_level.upper() if args.log_level else None,
    )


async def run_command(gateway: DatabaseGateway, args: argparse.Namespace) -> tuple[int, Any]:
    """Dispatch one subcommand; returns the exit code and the JSON payload."""

    if args.command == "connect":
        request = EstablishRequest(
            dialect=Dialect(args.dialect),
            uri=args.uri,
            connection_id=args.connection_id,
            owner_id=args.owner_id,
            display_name=args.display_name,
            pipeline_mode=PipelineMode.SCHEMA_ONLY if args.schema_only else PipelineMode.SNAPSHOT,
        )
        result = await gateway.establish(request)
        return 0, {
            "connectionId": result.descriptor.id,
            "strategy": result.strategy,
            "tables": list(result.descriptor.table_names()),
            "failedTables": list(result.failed_tables),
            "ingestedRecords": result.ingested_records,
            **({"ingestionError": result.ingestion_error} if result.ingestion_error else {}),
        }
    if args.command == "sync":
        report = await gateway.sync(args.connection_id)
        return (1 if report.status is SyncStatus.FAILED else 0), report.as_dict()
    if args.command == "query":
        text = sys.stdin.read() if args.text == "-" else args.text
        outcome = await gateway.execute(args.connection_id, text)
        payload = outcome.as_dict()
        if outcome.warnings:
            payload["warnings"] = list(outcome.warnings)
        return (0 if outcome.success else 1), payload
    if args.command == "delete":
        removed = await gateway.delete(args.connection_id)
        return (0 if removed else 1), {"connectionId": args.connection_id, "deleted": removed}
    if args.connection_id is None:
        descriptors = await gateway.connections.list()
        return 0, [
            {
                "connectionId": item.id,
                "dialect": item.dialect.value,
                "displayName": item.display_name,
                "pipelineMode": item.pipeline_mode.value,
                "tables": len(item.schema),
            }
            for item in descriptors
        ]
    descriptor = await gateway.describe(args.connection_id)
    if descriptor is None:
        return 1, {"success": False, "error": f"Unknown connection '{args.connection_id}'"}
    payload = descriptor_to_json(descriptor)
    payload.pop("uri", None)
    payload["watermarks"] = [watermark_to_json(item) for item in await gateway.watermarks(args.connection_id)]
    return 0, payload


async def _main(config: GatewayConfig, args: argparse.Namespace) -> int:
    async with DatabaseGateway.from_config(config, demo=args.demo) as gateway:
        gateway.registry.install_signal_handlers()
        try:
            code, payload = await run_command(gateway, args)
        except ConnectionEstablishError as exc:
            code, payload = 1, {
                "success": False,
                "error": str(exc),
                "attempts": [{"strategy": item.strategy, "error": item.message} for item in exc.attempts],
            }
        except GatewayError as exc:
            code, payload = 1, {"success": False, "error": str(exc)}
    print(json.dumps(payload, indent=2, default=str))
    return code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config = build_config(args)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    LOG.debug("Loaded configuration", extra={"state_file": str(config.state_file)})
    return asyncio.run(_main(config, args))


__all__ = ["build_config", "main", "parse_args", "run_command"]
