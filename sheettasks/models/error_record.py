from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""One line of the skipped/failed row log.

A record names the export source, the 1-based sheet row and an UPPER_SNAKE
error type such as NO_LIST_CONTEXT, LIST_UNRESOLVED or TASK_CREATE_FAILED.
Run-level aborts (missing columns, unreadable checkpoint) have no row and are
written with row=-1.
"""

__all__ = [
    "RUN_LEVEL_ROW",
    "ErrorRecord",
]

RUN_LEVEL_ROW = -1


def _utc_stamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ErrorRecord:
    timestamp: str  # ISO8601, 'Z' 終端
    source: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(source: str, row: int, error_type: str, message: str) -> ErrorRecord:
        return ErrorRecord(_utc_stamp(), source, row, error_type, message)

    @staticmethod
    def for_run(source: str, error_type: str, message: str) -> ErrorRecord:
        """Record for a failure that concerns the whole run rather than a row."""
        return ErrorRecord(_utc_stamp(), source, RUN_LEVEL_ROW, error_type, message)

    def to_json_line(self) -> str:
        # キー集合は固定 (dataclass のフィールドのみ)
        return json.dumps(asdict(self), ensure_ascii=False)
