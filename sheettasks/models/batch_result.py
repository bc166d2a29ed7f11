from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

"""Result model for one export batch invocation.

The batch runner returns a BatchResult so the CLI can print its SUMMARY line
and choose an exit code without reaching back into the checkpoint store.
"""

__all__ = [
    "BatchResult",
    "RunState",
]


class RunState(Enum):
    RESCHEDULED = "rescheduled"  # more rows remain, one continuation is pending
    FINALIZED = "finalized"  # all rows processed, report emitted, checkpoint cleared


@dataclass(frozen=True)
class BatchResult:
    """Aggregated counters of one batch.

    start_row / next_row are 1-based sheet rows; next_row is the cursor that
    was persisted (or would have been, for a finalized run).
    """
    state: RunState
    source: str
    start_row: int
    next_row: int
    last_row: int
    processed_rows: int  # rows read from the slice (including skipped ones)
    created_tasks: int
    skipped_rows: int
    failed_rows: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float

    @property
    def finished(self) -> bool:
        return self.state is RunState.FINALIZED
