from __future__ import annotations

import argparse
import importlib
from pathlib import Path
import sys

from autobackup.config import MirrorConfig, build_config
from autobackup.errors import ConfigError
from autobackup.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_RUNTIME_OR_CONFIG_ERROR,
    EXIT_SUCCESS,
    configure_logging,
    run_mirror_once,
    run_watch_service,
)


def _add_mapping_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, help="YAML or JSON config file")
    parser.add_argument("--source", type=Path, help="Source directory (overrides config)")
    parser.add_argument("--backup", type=Path, help="Backup directory (overrides config)")
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument("--log-level", default=None)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autobackup", description="Continuous one-way folder backup")
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch_parser = subparsers.add_parser("watch", help="Mirror once, then keep mirroring changes")
    _add_mapping_arguments(watch_parser)

    run_parser = subparsers.add_parser("run", help="Mirror the source once and exit")
    _add_mapping_arguments(run_parser)

    validate_parser = subparsers.add_parser("validate-config", help="Validate config")
    validate_parser.add_argument("--config", required=True, type=Path)

    agent_parser = subparsers.add_parser("agent", help="Start the task tray agent")
    agent_parser.add_argument("--config", type=Path, default=Path.cwd() / "autobackup.yaml")

    return parser


def _load(args: argparse.Namespace) -> MirrorConfig:
    config = build_config(args.config, source=args.source, backup=args.backup)
    configure_logging(
        log_file=args.log_file or config.log_file,
        level=args.log_level or config.log_level,
    )
    return config


def cmd_validate(config_path: Path) -> int:
    try:
        config = build_config(config_path)
    except ConfigError as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    print(f"Valid config: {config_path}")
    print(
        f"  - source={config.source_root} "
        f"backup={config.backup_root} "
        f"maxAttempts={config.max_attempts} "
        f"retryDelayMs={int(config.retry_delay * 1000)} "
        f"workers={config.workers}"
    )
    if not config.source_root.is_dir():
        print(f"  ! source directory does not exist yet: {config.source_root}", file=sys.stderr)
    return EXIT_SUCCESS


def cmd_run(args: argparse.Namespace) -> int:
    try:
        config = _load(args)
    except ConfigError as exc:
        print(f"Config/runtime error: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    exit_code, stats = run_mirror_once(config)
    print(
        f"{config.source_root} -> {config.backup_root} | "
        f"copied={stats.copied} skipped={stats.skipped} failed={stats.failed}"
    )
    return exit_code


def cmd_watch(args: argparse.Namespace) -> int:
    try:
        config = _load(args)
    except ConfigError as exc:
        print(f"Config/runtime error: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    return run_watch_service(config)


def cmd_agent(config_path: Path) -> int:
    try:
        tray_agent = importlib.import_module("autobackup.tray_agent")
    except ModuleNotFoundError as exc:
        missing = exc.name or "unknown"
        print(
            (
                f"Failed to load tray agent dependency: {missing}. "
                "Reinstall dependencies in your active environment with: pip install -e ."
            ),
            file=sys.stderr,
        )
        return EXIT_RUNTIME_OR_CONFIG_ERROR
    except Exception as exc:
        print(f"Failed to load tray agent: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_OR_CONFIG_ERROR

    return int(tray_agent.main(["--config", str(config_path)]))


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate-config":
        return cmd_validate(args.config)
    if args.command == "run":
        return cmd_run(args)
    if args.command == "watch":
        return cmd_watch(args)
    if args.command == "agent":
        return cmd_agent(args.config)

    parser.print_help()
    return EXIT_RUNTIME_OR_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
