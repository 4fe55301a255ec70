"""
checkpoint-cms command line interface.

Operates on one SQLite database holding both live content and versions.
Every command prints JSON on stdout; errors print a JSON error document on
stderr and exit non-zero.
"""

import asyncio
import sys
import json
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from .managers.version_control import VersionControlManager
from .models import ChangeOp, ContentKind
from .utils.config import load_config, reset_config_loader
from .utils.errors import CheckpointCMSError
from .utils.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checkpoint-cms",
        description="Checkpoint version control for CMS content"
    )
    parser.add_argument("--config", type=Path, help="Configuration file (json, yaml, toml, .env)")
    parser.add_argument("--db", type=Path, help="SQLite database path (overrides config)")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    parser.add_argument("--log-dir", type=Path, help="Log directory (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    show = subparsers.add_parser("show", help="Print the live content of a context")
    show.add_argument("context")

    init = subparsers.add_parser("init", help="Create the baseline version if missing")
    init.add_argument("context")

    versions = subparsers.add_parser("versions", help="List versions, newest first")
    versions.add_argument("context")
    versions.add_argument("--limit", type=int, default=None, help="Maximum results")

    set_cmd = subparsers.add_parser("set", help="Edit one entity and save")
    set_cmd.add_argument("context")
    set_cmd.add_argument("kind", choices=[k.value for k in ContentKind])
    set_cmd.add_argument("id")
    set_cmd.add_argument("value", help="Text, or a JSON object for record kinds")
    set_cmd.add_argument("--create", action="store_true", help="Create a new record")
    set_cmd.add_argument("-m", "--description", default=None, help="Version description")
    set_cmd.add_argument("--author", default=None, help="Recorded as the version's creator")

    delete = subparsers.add_parser("delete", help="Soft-remove one entity and save")
    delete.add_argument("context")
    delete.add_argument("kind", choices=[k.value for k in ContentKind])
    delete.add_argument("id")
    delete.add_argument("-m", "--description", default=None, help="Version description")
    delete.add_argument("--author", default=None, help="Recorded as the version's creator")

    restore = subparsers.add_parser("restore", help="Restore a version")
    restore.add_argument("context")
    restore.add_argument("number", type=int)

    clear = subparsers.add_parser("clear", help="Delete every version of a context")
    clear.add_argument("context")
    clear.add_argument("--yes", action="store_true", help="Confirm the deletion")

    return parser


def _parse_value(kind: ContentKind, raw: str) -> Any:
    if not kind.is_record:
        return raw
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CheckpointCMSError(f"{kind.value} values must be JSON objects: {e}") from e
    return value


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_command(args: argparse.Namespace, vcm: VersionControlManager) -> Any:
    """Execute a parsed command and return its JSON-ready result."""
    if args.command == "show":
        snapshot = await vcm.capture(args.context)
        return {
            "context": args.context,
            "content_hash": snapshot.content_hash,
            "content": snapshot.values(),
        }

    if args.command == "init":
        created = await vcm.open_context(args.context)
        return {"context": args.context, "baseline_created": created}

    if args.command == "versions":
        summaries = await vcm.list_versions(args.context, args.limit)
        return [s.to_dict() for s in summaries]

    if args.command == "set":
        kind = ContentKind(args.kind)
        op = ChangeOp.CREATE if args.create else ChangeOp.UPDATE
        await vcm.track_change(args.context, kind, args.id, None, _parse_value(kind, args.value), op)
        return (await vcm.save(args.context, args.description, args.author)).to_dict()

    if args.command == "delete":
        await vcm.track_change(args.context, args.kind, args.id, op=ChangeOp.DELETE)
        return (await vcm.save(args.context, args.description, args.author)).to_dict()

    if args.command == "restore":
        return (await vcm.restore(args.context, args.number)).to_dict()

    if args.command == "clear":
        if not args.yes:
            raise CheckpointCMSError("Refusing to delete all versions without --yes")
        deleted = await vcm.clear_all_versions(args.context)
        return {"context": args.context, "deleted_count": deleted}

    raise CheckpointCMSError(f"Unknown command: {args.command}")


async def main_async(argv: Optional[List[str]] = None) -> int:
    """Async main function. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    overrides: Dict[str, Any] = {}
    if args.db:
        overrides.setdefault("database", {})["path"] = str(args.db)
    if args.log_level:
        overrides.setdefault("logging", {})["level"] = args.log_level
    if args.log_dir:
        overrides.setdefault("logging", {})["directory"] = str(args.log_dir)

    try:
        reset_config_loader()
        config = await load_config(
            config_paths=[args.config] if args.config else None,
            extra_config=overrides or None,
        )
    except CheckpointCMSError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 2

    setup_logging(
        app_name=config.app_name,
        log_level=config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_console=config.logging.enable_console,
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
        enable_metrics=config.logging.enable_metrics,
        max_bytes=config.logging.max_size,
        backup_count=config.logging.backup_count,
    )

    vcm = VersionControlManager(config)
    try:
        await vcm.initialize()
        result = await run_command(args, vcm)
    except CheckpointCMSError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1
    finally:
        await vcm.close()

    _emit(result)
    return 0


def main():
    """Main entry point."""
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
