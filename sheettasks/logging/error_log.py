from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from sheettasks.models.error_record import ErrorRecord

"""Skipped/failed row log.

Rows that did not become a task (and run-level aborts) are buffered as
ErrorRecords during a batch and appended as JSON Lines to
`logs/errors-YYYYMMDD-HHMMSS.log` when the batch ends. The file name is
stamped (UTC) the first time something is written, so an invocation without
problems leaves no file behind.
"""

__all__ = [
    "ErrorLogBuffer",
    "ErrorRecord",
]

DEFAULT_LOGS_DIR = Path("./logs")
FILE_STAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """Batch-scoped buffer of ErrorRecords; not thread safe."""

    def __init__(self, logs_dir: Path | None = None) -> None:
        self.logs_dir = logs_dir if logs_dir is not None else DEFAULT_LOGS_DIR
        self._pending: list[ErrorRecord] = []
        self._path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._path is None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            self._path = self.logs_dir / f"errors-{datetime.now(UTC).strftime(FILE_STAMP_FMT)}.log"
        return self._path

    def append(self, record: ErrorRecord) -> None:
        self._pending.append(record)

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def records(self) -> list[ErrorRecord]:
        return self._pending[:]

    def flush(self) -> Path | None:
        """Append pending records to the log file.

        Returns:
            The file written to, or None when nothing was pending.
        """
        if not self._pending:
            return None
        path = self.file_path
        lines = "".join(f"{record.to_json_line()}\n" for record in self._pending)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(lines)
        self._pending = []
        return path
