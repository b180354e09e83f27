from __future__ import annotations

import argparse
import faulthandler
import json
import logging
import sqlite3
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

from pos_sync import __version__
from pos_sync.bootstrap.container import AppContainer, build_container
from pos_sync.bootstrap.exception_handler import handle_unexpected_exception
from pos_sync.bootstrap.logging import configure_logging, install_exception_hook
from pos_sync.bootstrap.settings import resolve_log_dir
from pos_sync.core.errors import AppError
from pos_sync.core.metrics import metrics_registry
from pos_sync.infrastructure.local_config import LocalConfigStore
from pos_sync.infrastructure.migrations import MIGRATIONS_DIR, MigrationRunner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERNAL_ERROR = 3

ContainerFactory = Callable[[], AppContainer]


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pos-sync", description="Offline-first POS sync engine")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--selfcheck", action="store_true", help="Check log dir, config and schema, then exit")
    parser.add_argument("--verbose", action="store_true", help="Also print warnings to stderr")
    commands = parser.add_subparsers(dest="command")

    run = commands.add_parser("run", help="Merge, then sync in the background until interrupted")
    run.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    commands.add_parser("sync-once", help="Run a single sync pass")
    commands.add_parser("merge", help="Reconcile local data with the remote store")
    commands.add_parser("stats", help="Show queue sizes, conflicts and metrics")

    dead_letter = commands.add_parser("dead-letter", help="Inspect or retry dead-lettered entries")
    dl_commands = dead_letter.add_subparsers(dest="dl_command", required=True)
    dl_commands.add_parser("list")
    retry = dl_commands.add_parser("retry")
    retry.add_argument("key", type=int)
    dl_commands.add_parser("retry-all")
    delete = dl_commands.add_parser("delete")
    delete.add_argument("key", type=int)
    dl_commands.add_parser("clear")

    integrity = commands.add_parser("integrity", help="Check sale logs against sales")
    integrity.add_argument("--repair", action="store_true", help="Recreate missing sale logs")

    backup = commands.add_parser("backup", help="Write a JSON backup or restore one")
    backup.add_argument("--restore", type=Path, default=None, metavar="FILE")
    backup.add_argument("--list", action="store_true", help="List existing backups")
    return parser


def _run_selfcheck(log_dir: Path) -> int:
    errors = 0
    if not any(MIGRATIONS_DIR.glob("*.up.sql")):
        logger.error("No migrations found in %s", MIGRATIONS_DIR)
        errors += 1
    try:
        connection = sqlite3.connect(":memory:")
        try:
            runner = MigrationRunner(connection)
            applied = runner.apply_all()
            missing = runner.missing_tables()
        finally:
            connection.close()
        logger.info("Schema check applied migrations %s", applied)
        if missing:
            logger.error("Schema is missing tables %s", missing)
            errors += 1
    except (sqlite3.Error, OSError) as exc:
        logger.error("Schema check failed: %s", exc)
        errors += 1
    config_store = LocalConfigStore()
    if config_store.config_path.exists() and config_store.load() is None:
        logger.error("Configuration file %s has no usable remote settings", config_store.config_path)
        errors += 1

    result = {"ok": errors == 0, "errors": errors, "log_dir": str(log_dir), "config": str(config_store.config_path)}
    _emit(result)
    if errors:
        logger.error("Selfcheck failed with %s error(s); see %s", errors, log_dir)
        return EXIT_FAILURE
    logger.info("Selfcheck OK")
    return EXIT_OK


def _command_run(container: AppContainer, duration: float | None) -> int:
    report = container.init()
    _emit({"merge": asdict(report)})
    processor = container.processor
    processor.set_online(container.connectivity.is_online())
    processor.start()
    deadline = time.monotonic() + duration if duration is not None else None
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(container.settings.sync_interval_seconds)
            processor.set_online(container.connectivity.is_online())
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping")
    return EXIT_OK


def _command_dead_letter(container: AppContainer, args: argparse.Namespace) -> int:
    service = container.dead_letters
    if args.dl_command == "list":
        _emit([item.to_payload() for item in service.list_failed()])
        return EXIT_OK
    if args.dl_command == "retry":
        ok = service.retry(args.key)
        _emit({"key": args.key, "delivered": ok})
        return EXIT_OK if ok else EXIT_FAILURE
    if args.dl_command == "retry-all":
        result = service.retry_all()
        _emit(asdict(result))
        return EXIT_OK if result.failed == 0 else EXIT_FAILURE
    if args.dl_command == "delete":
        deleted = service.delete(args.key)
        _emit({"key": args.key, "deleted": deleted})
        return EXIT_OK if deleted else EXIT_FAILURE
    _emit({"deleted": service.delete_all()})
    return EXIT_OK


def _command_backup(container: AppContainer, restore: Path | None, list_only: bool) -> int:
    if list_only:
        _emit([str(path) for path in container.backups.list_backups()])
    elif restore is not None:
        _emit({"restored": container.backups.restore(restore)})
    else:
        _emit({"backup": str(container.backups.create_backup())})
    return EXIT_OK


def _dispatch(container: AppContainer, args: argparse.Namespace) -> int:
    if args.command == "run":
        return _command_run(container, args.duration)
    if args.command == "sync-once":
        report = container.processor.run_once()
        _emit(asdict(report))
        return EXIT_OK if report.failed == 0 else EXIT_FAILURE
    if args.command == "merge":
        report = container.init()
        _emit(asdict(report))
        return EXIT_OK
    if args.command == "stats":
        _emit(
            {
                "queue": asdict(container.queue_monitor.check()),
                "merge_conflicts": container.conflict_log.count_conflicts(),
                "simulation": container.gateway.simulation,
                "metrics": metrics_registry.snapshot(),
            }
        )
        return EXIT_OK
    if args.command == "dead-letter":
        return _command_dead_letter(container, args)
    if args.command == "integrity":
        report = container.integrity.check()
        payload: dict[str, Any] = asdict(report)
        if args.repair:
            payload["repaired"] = container.integrity.repair_missing()
        _emit(payload)
        return EXIT_OK if report.ok or args.repair else EXIT_FAILURE
    if args.command == "backup":
        return _command_backup(container, args.restore, args.list)
    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: list[str] | None = None, container_factory: ContainerFactory = build_container) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    remote_config = LocalConfigStore().load()
    configure_logging(
        log_dir,
        console=args.verbose,
        device_id=remote_config.device_id if remote_config is not None else None,
    )
    install_exception_hook(log_dir)
    faulthandler.enable()

    logger.info("pos-sync %s, log dir %s", __version__, log_dir)
    logger.info("Python: %s", sys.version)

    if args.selfcheck:
        return _run_selfcheck(log_dir)
    if args.command is None:
        parser.print_help()
        return EXIT_FAILURE

    container: AppContainer | None = None
    try:
        container = container_factory()
        return _dispatch(container, args)
    except AppError as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.stderr.write(f"error: {exc}\n")
        return EXIT_FAILURE
    except Exception:  # noqa: BLE001
        incident_id = handle_unexpected_exception(
            *sys.exc_info(),
            device_id=remote_config.device_id if remote_config is not None else None,
        )
        sys.stderr.write(f"Unexpected error, incident {incident_id}; see {log_dir}\n")
        return EXIT_INTERNAL_ERROR
    finally:
        if container is not None:
            container.teardown()


if __name__ == "__main__":
    raise SystemExit(main())
