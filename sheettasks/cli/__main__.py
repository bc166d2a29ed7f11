from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from sheettasks.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from sheettasks.logging.init import log_summary, set_debug, setup_logging
from sheettasks.models.batch_result import BatchResult
from sheettasks.models.config_models import ExportConfig
from sheettasks.services.batch_runner import BatchRunner, ExportError
from sheettasks.services.report import ExcelReportWriter, GoogleSheetReportWriter, render_summary_line
from sheettasks.services.scheduler import FileTriggerHost, SchedulerBridge
from sheettasks.services.worker import run_worker
from sheettasks.sheet.json_import import JsonImportError, import_json_file
from sheettasks.sheet.reader import (
    MissingColumnsError,
    SheetHeaderError,
    SheetSource,
    parse_source_identifier,
    read_excel_sheet,
    read_google_sheet,
)
from sheettasks.store.checkpoint_store import CheckpointStore, JsonFileStore, PostgresStore, StoreError
from sheettasks.tasks.client import GoogleTasksClient

"""CLI entrypoint.

    sheettasks import-json Tasks.json --workbook data/tasks.xlsx --sheet Tasks
    sheettasks start              # fresh export run, first batch
    sheettasks continue           # one batch from the stored checkpoint
    sheettasks worker [--once]    # fire pending continuations as they become due
    sheettasks status             # show checkpoint + pending trigger

Connection settings resolve in this order:
    1. `.env` (loaded with override before the config is read)
    2. variables already present in the process environment
    3. config/export.yml
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv; a missing file is not an error."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sheettasks", description="Spreadsheet <-> Google Tasks exporter")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to export.yml")
    p.add_argument("--env-file", type=Path, default=Path(".env"), help="dotenv file loaded before the config")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import-json", help="Import a Google Tasks JSON export into a workbook sheet")
    imp.add_argument("json_file", type=Path)
    imp.add_argument("--workbook", type=Path, required=True)
    imp.add_argument("--sheet", default="Tasks")

    start = sub.add_parser("start", help="Start a fresh export run (discards any previous checkpoint)")
    start.add_argument("--sheet", help="Override the configured source sheet")

    sub.add_parser("continue", help="Run one batch from the stored checkpoint")

    worker = sub.add_parser("worker", help="Run pending continuations when they are due")
    worker.add_argument("--once", action="store_true", help="Fire at most one due continuation and exit")
    worker.add_argument("--max-runs", type=int, default=None)

    sub.add_parser("status", help="Show the stored checkpoint and pending continuation")
    return p.parse_args(argv)


def _build_store(cfg: ExportConfig) -> CheckpointStore:
    if cfg.checkpoint.backend == "postgres":
        return CheckpointStore(PostgresStore.connect(cfg.checkpoint.dsn or "", cfg.checkpoint.table))
    return CheckpointStore(JsonFileStore(Path(cfg.checkpoint.path or "")))


def _build_scheduler(cfg: ExportConfig) -> SchedulerBridge:
    return SchedulerBridge(
        FileTriggerHost(Path(cfg.scheduler.trigger_file)),
        delay_seconds=cfg.export.reschedule_delay_sec,
    )


def _build_google(cfg: ExportConfig) -> tuple[GoogleTasksClient, Any]:
    """Return (tasks client, gspread client or None)."""
    from sheettasks.tasks.auth import build_gspread_client, build_tasks_service, load_credentials

    creds = load_credentials(cfg.google)
    gspread_client = build_gspread_client(creds) if cfg.source.kind == "gsheet" else None
    return GoogleTasksClient(build_tasks_service(creds)), gspread_client


def _build_runner(cfg: ExportConfig) -> BatchRunner:
    service, gspread_client = _build_google(cfg)

    def open_source(identifier: str) -> SheetSource:
        kind, location, sheet = parse_source_identifier(identifier)
        if kind == "gsheet":
            return read_google_sheet(gspread_client, location, sheet)
        return read_excel_sheet(Path(location), sheet)

    writer = GoogleSheetReportWriter(gspread_client) if cfg.source.kind == "gsheet" else ExcelReportWriter()
    return BatchRunner(
        store=_build_store(cfg),
        scheduler=_build_scheduler(cfg),
        service=service,
        open_source=open_source,
        settings=cfg.export,
        report_writer=writer,
    )


def _exit_code(result: BatchResult) -> int:
    return EXIT_PARTIAL_FAILURE if result.failed_rows > 0 else EXIT_SUCCESS


def _log_result(result: BatchResult) -> None:
    summary_line = render_summary_line(result)
    # log_summary が "SUMMARY " を付与するので除去
    log_summary(summary_line[len("SUMMARY "):])


def _cmd_import_json(args: argparse.Namespace, logger: Any) -> int:
    try:
        count = import_json_file(args.json_file, args.workbook, args.sheet)
    except JsonImportError as e:
        logger.error(f"import: {e}")
        return EXIT_FATAL
    logger.info(f"Import complete! Successfully imported {count} records to sheet \"{args.sheet}\".")
    return EXIT_SUCCESS


def _cmd_status(cfg: ExportConfig, logger: Any) -> int:
    store = _build_store(cfg)
    cp = store.load(cfg.export.first_data_row)
    if not cp.source:
        logger.info("no export run in progress")
    else:
        logger.info(
            f"source={cp.source} next_row={cp.next_row} last_list=\"{cp.last_list_name or ''}\" "
            f"cached_lists={len(cp.list_cache)}"
        )
        for name, stats in cp.report_as_dict().items():
            logger.info(f"  list=\"{name}\" total={stats['total']} completed={stats['completed']} "
                        f"needs_action={stats['needsAction']}")
    for trigger in _build_scheduler(cfg).pending():
        logger.info(f"pending continuation at {trigger.run_at.isoformat()}")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む ([] を渡すテストで pytest の引数を拾わないため)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(args.env_file, override=True)

    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    if args.command == "import-json":
        return _cmd_import_json(args, logger)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "start" and args.sheet:
        cfg = replace(cfg, source=replace(cfg.source, sheet=args.sheet))

    try:
        if args.command == "status":
            return _cmd_status(cfg, logger)

        runner = _build_runner(cfg)
        if args.command == "start":
            result = runner.start(cfg.source.identifier)
        elif args.command == "continue":
            result = runner.run_batch()
        else:
            results: list[BatchResult] = []

            def on_result(r: BatchResult) -> None:
                results.append(r)
                _log_result(r)

            runs = run_worker(
                runner.scheduler,
                runner.run_batch,
                once=args.once,
                poll_seconds=cfg.scheduler.poll_seconds,
                max_runs=args.max_runs,
                on_result=on_result,
            )
            logger.info(f"worker finished after {runs} continuation(s)")
            return EXIT_PARTIAL_FAILURE if any(r.failed_rows for r in results) else EXIT_SUCCESS
    except (ExportError, MissingColumnsError, SheetHeaderError) as e:
        logger.error(f"export: {e}")
        return EXIT_FATAL
    except StoreError as e:
        logger.error(f"checkpoint: {e}")
        return EXIT_FATAL

    _log_result(result)
    return _exit_code(result)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
