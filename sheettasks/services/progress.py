from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm

"""Per-batch row progress bar.

A bar is drawn only when stdout is a terminal (`sheettasks start` run by
hand). Under the worker, cron or CI the tracker only counts rows, and the
per-row log lines remain the record of what happened.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Counts the rows of one batch slice and mirrors them on a tqdm bar.

    Use as a context manager so the bar is closed even if the batch raises.
    """

    def __init__(self, total_rows: int, *, description: str = "Exporting rows") -> None:
        self.total_rows = total_rows
        self.current_row = 0
        self.enabled = is_tty_enabled()
        self.pbar: Any | None = None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                ncols=80,
                ascii=True,
                leave=False,
            )

    def advance(self, **postfix: Any) -> None:
        """Count one row; keyword arguments are shown as the bar postfix."""
        self.current_row += 1
        if self.pbar is None:
            return
        self.pbar.update(1)
        if postfix:
            self.pbar.set_postfix(**postfix)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
