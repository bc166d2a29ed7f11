from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..logging.init import log_summary
from ..models.batch_result import BatchResult, RunState
from ..models.checkpoint import Checkpoint
from ..models.config_models import ExportSettings
from ..sheet.reader import MissingColumnsError, SheetHeaderError, SheetNotFoundError, SheetSource
from ..store.checkpoint_store import CheckpointStore, StoreError
from ..tasks.client import TaskServiceError
from .classifier import ColumnIndex, ListMarker, Skip, TaskCandidate, classify
from .progress import ProgressTracker
from .report import ReportWriter
from .resolver import TaskListResolver, TaskService, Unresolved
from .scheduler import SchedulerBridge

"""Resumable batch export of sheet rows into Google Tasks.

One call to BatchRunner.run_batch() is one invocation of the state machine

    LoadCheckpoint -> RefreshCache -> SliceRows -> ForEachRow -> PersistCheckpoint
        -> Reschedule (rows remain) | Finalize (no rows remain)

All run state lives in the Checkpoint loaded at the start and stored at the
end of the batch. The checkpoint is persisted before the continuation is
scheduled, so an invocation that dies between the two is healed by the next
manual or triggered run reading the same checkpoint.

Row-level problems (unresolvable list, rejected task, missing fields) are
logged and skipped. Only structural problems abort a run: a missing source
reference, an unreadable source, or a sheet without a 'title' column.
"""

__all__ = [
    "BatchCounters",
    "BatchRunner",
    "CheckpointError",
    "ExportError",
    "process_batch",
]

logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Base exception for errors that abort an export run."""
    pass


class CheckpointError(ExportError):
    """Stored checkpoint is missing its source or cannot be read."""
    pass


@dataclass
class BatchCounters:
    processed: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0


def _copy_checkpoint(cp: Checkpoint) -> Checkpoint:
    return Checkpoint(
        source=cp.source,
        next_row=cp.next_row,
        list_cache=dict(cp.list_cache),
        last_list_name=cp.last_list_name,
        report={name: replace(counters) for name, counters in cp.report.items()},
    )


def process_batch(
    checkpoint: Checkpoint,
    rows: list[list[Any]],
    columns: ColumnIndex,
    resolver: TaskListResolver,
    service: TaskService,
    settings: ExportSettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
    error_log: ErrorLogBuffer | None = None,
) -> tuple[Checkpoint, BatchCounters]:
    """Process one slice of rows starting at checkpoint.next_row.

    The input checkpoint is not modified. The returned checkpoint has the
    cursor advanced past every row of the slice (skipped and failed rows
    included) and carries the updated cache, last list title and report.

    Args:
        checkpoint: State before the slice
        rows: Consecutive sheet rows, the first one being checkpoint.next_row
        columns: Column positions resolved from the header
        resolver: List name -> id resolution (writes through to the cache)
        service: Remote service used for task creation
        settings: Marker token and inter-call delay
        sleep: Pause function (tests inject a no-op)
        error_log: Buffer receiving one record per skipped/failed row

    Returns:
        (new checkpoint, counters)
    """
    cp = _copy_checkpoint(checkpoint)
    start_row = checkpoint.next_row
    source = cp.source or "<unknown>"
    counters = BatchCounters()

    def record(row_number: int, error_type: str, message: str) -> None:
        if error_log is not None:
            error_log.append(ErrorRecord.create(source, row_number, error_type, message))

    with ProgressTracker(len(rows), description="Exporting rows") as progress:
        for offset, row in enumerate(rows):
            row_number = start_row + offset
            counters.processed += 1
            result = classify(row, columns, cp.last_list_name, settings.list_marker)
            if result.list_name:
                cp.last_list_name = result.list_name

            if isinstance(result, ListMarker):
                logger.info(f"Row {row_number}: list definition row, current list is now \"{result.name}\".")
            elif isinstance(result, Skip):
                counters.skipped += 1
                logger.info(f"Row {row_number}: Skipped because {result.message}.")
                record(row_number, result.reason, result.message)
            elif isinstance(result, TaskCandidate):
                _export_task(row_number, result, cp, counters, resolver, service, record)
                # レート制限対策: 成否に関わらず毎回待機
                sleep(settings.api_delay_seconds)

            progress.advance(created=counters.created, skipped=counters.skipped, failed=counters.failed)

    cp.next_row = start_row + len(rows)
    return cp, counters


def _export_task(
    row_number: int,
    candidate: TaskCandidate,
    cp: Checkpoint,
    counters: BatchCounters,
    resolver: TaskListResolver,
    service: TaskService,
    record: Callable[[int, str, str], None],
) -> None:
    task = candidate.task
    resolution = resolver.resolve(candidate.list_name, cp.list_cache)
    if isinstance(resolution, Unresolved):
        counters.failed += 1
        msg = f"an ID could not be found or created for task list \"{candidate.list_name}\" ({resolution.reason})"
        logger.warning(f"Row {row_number}: Skipped because {msg}.")
        record(row_number, "LIST_UNRESOLVED", msg)
        return

    try:
        service.create_task(resolution.list_id, task)
    except TaskServiceError as e:
        counters.failed += 1
        logger.warning(f"Row {row_number}: FAILED to create task \"{task.title}\". Error: {e}")
        record(row_number, "TASK_CREATE_FAILED", str(e))
        return

    cp.record_task(candidate.list_name, task.is_completed)
    counters.created += 1
    logger.info(f"Row {row_number}: Successfully created task \"{task.title}\" in list \"{candidate.list_name}\".")


class BatchRunner:
    """Entry points of the export state machine.

    start() begins a fresh run, run_batch() performs one invocation. Both
    return a BatchResult; fatal conditions raise ExportError subclasses or
    MissingColumnsError after pending triggers have been cancelled.
    """

    def __init__(
        self,
        store: CheckpointStore,
        scheduler: SchedulerBridge,
        service: TaskService,
        open_source: Callable[[str], SheetSource],
        settings: ExportSettings | None = None,
        report_writer: ReportWriter | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.service = service
        self.open_source = open_source
        self.settings = settings or ExportSettings()
        self.report_writer = report_writer
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(UTC))
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self.resolver = TaskListResolver(service, self.settings.list_race_backoff_seconds, sleep=sleep)

    def start(self, source: str) -> BatchResult:
        """Start a new export of `source`, discarding any previous run state."""
        self.scheduler.cancel_all()
        self.store.begin(source)
        logger.info(f"Starting task creation for sheet \"{source}\".")
        return self.run_batch()

    def _abort(self, error_type: str, message: str, source: str = "<none>") -> None:
        logger.error(message)
        self.error_log.append(ErrorRecord.for_run(source, error_type, message))
        self._flush_error_log()
        self.scheduler.cancel_all()

    def _flush_error_log(self) -> None:
        try:
            path = self.error_log.flush()
        except OSError as e:
            logger.warning(f"could not write error log: {e}")
            return
        if path is not None:
            logger.info(f"skipped/failed rows written to {path}")

    def _load(self) -> Checkpoint:
        try:
            cp = self.store.load(self.settings.first_data_row)
        except StoreError as e:
            self._abort("CHECKPOINT_UNREADABLE", f"Error: checkpoint cannot be read ({e}). Aborting.")
            raise CheckpointError(str(e)) from e
        if not cp.source:
            self._abort("CHECKPOINT_NO_SOURCE", "Error: No source sheet found in checkpoint. Aborting.")
            raise CheckpointError("no source sheet recorded in checkpoint")
        return cp

    def _open(self, source: str) -> SheetSource:
        try:
            return self.open_source(source)
        except (SheetNotFoundError, ValueError) as e:
            self._abort("SOURCE_NOT_FOUND", f"Error: Could not open source \"{source}\": {e}. Aborting.", source)
            raise CheckpointError(str(e)) from e

    def run_batch(self) -> BatchResult:
        start_time = self._now()
        cp = self._load()
        sheet = self._open(cp.source or "")
        last_row = sheet.get_last_row()

        if cp.next_row > last_row:
            return self._finalize(cp, BatchCounters(), start_time, cp.next_row, last_row)

        try:
            columns = ColumnIndex.from_headers(sheet.get_headers())
        except (MissingColumnsError, SheetHeaderError) as e:
            self.store.clear()
            self._abort("MISSING_COLUMNS", f"Skipping sheet \"{sheet.sheet_name}\". {e}", cp.source)
            raise

        logger.info(f"Starting process. Sheet: \"{sheet.sheet_name}\", Starting row: {cp.next_row}")
        self.resolver.refresh(cp.list_cache)

        count = min(self.settings.batch_size, last_row - cp.next_row + 1)
        rows = sheet.get_row_slice(cp.next_row, count)
        start_row = cp.next_row
        new_cp, counters = process_batch(
            cp,
            rows,
            columns,
            self.resolver,
            self.service,
            self.settings,
            sleep=self._sleep,
            error_log=self.error_log,
        )
        # 行数が足りない場合でもカーソルは必ず count 分進める
        new_cp.next_row = start_row + count

        try:
            self.store.save(new_cp)
        except StoreError as e:
            self._abort("CHECKPOINT_WRITE_FAILED", f"Error: checkpoint could not be saved ({e}). Aborting.", cp.source or "<none>")
            raise CheckpointError(str(e)) from e
        self._flush_error_log()

        if new_cp.next_row > last_row:
            return self._finalize(new_cp, counters, start_time, start_row, last_row)

        trigger = self.scheduler.reschedule()
        logger.info(
            f"Processing complete for batch. Next batch will start at row {new_cp.next_row} "
            f"(scheduled {trigger.run_at.isoformat()})."
        )
        return self._result(RunState.RESCHEDULED, new_cp, counters, start_time, start_row, last_row)

    def _finalize(
        self,
        cp: Checkpoint,
        counters: BatchCounters,
        start_time: datetime,
        start_row: int,
        last_row: int,
    ) -> BatchResult:
        logger.info("All tasks have been successfully created! Cleaning up triggers and generating report.")
        report = cp.report_as_dict()
        for name, stats in report.items():
            log_summary(
                f"list=\"{name}\" total={stats['total']} completed={stats['completed']} "
                f"needs_action={stats['needsAction']}"
            )
        if self.report_writer is not None and cp.source:
            try:
                sheet_name = self.report_writer.write(cp.source, report, self._now())
                logger.info(f"Report written to sheet \"{sheet_name}\".")
            except Exception as e:
                logger.error(f"could not write report sheet: {e}")

        self.store.clear()
        self.scheduler.cancel_all()
        return self._result(RunState.FINALIZED, cp, counters, start_time, start_row, last_row)

    def _result(
        self,
        state: RunState,
        cp: Checkpoint,
        counters: BatchCounters,
        start_time: datetime,
        start_row: int,
        last_row: int,
    ) -> BatchResult:
        end_time = self._now()
        return BatchResult(
            state=state,
            source=cp.source or "",
            start_row=start_row,
            next_row=cp.next_row,
            last_row=last_row,
            processed_rows=counters.processed,
            created_tasks=counters.created,
            skipped_rows=counters.skipped,
            failed_rows=counters.failed,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=(end_time - start_time).total_seconds(),
        )
