from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Checkpoint value object for the resumable export pipeline.

A checkpoint is the whole state of an export run between two invocations:
the row cursor, the list name -> id cache, the list title carried forward
across batches and the per-list report counters. It is loaded at the start
of a batch and stored at the end; nothing else keeps run state.
"""

__all__ = [
    "Checkpoint",
    "ListCounters",
]


@dataclass
class ListCounters:
    """Per-list counters accumulated while tasks are created."""
    total: int = 0
    completed: int = 0
    needs_action: int = 0

    def record(self, completed: bool) -> None:
        if completed:
            self.completed += 1
        else:
            self.needs_action += 1
        self.total += 1

    def to_dict(self) -> dict[str, int]:
        # 外部表現は needsAction (Google Tasks のステータス名に合わせる)
        return {"total": self.total, "completed": self.completed, "needsAction": self.needs_action}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ListCounters:
        return ListCounters(
            total=int(data.get("total", 0)),
            completed=int(data.get("completed", 0)),
            needs_action=int(data.get("needsAction", 0)),
        )


@dataclass
class Checkpoint:
    """Durable cursor + cache + report of one export run.

    Attributes:
        source: Opaque identifier of the sheet being exported
        next_row: 1-based row number of the first unprocessed row
        list_cache: List display name -> remote list id
        last_list_name: Most recently seen list title, carried to later rows
        report: List display name -> counters
    """
    source: str | None
    next_row: int
    list_cache: dict[str, str] = field(default_factory=dict)
    last_list_name: str | None = None
    report: dict[str, ListCounters] = field(default_factory=dict)

    @staticmethod
    def fresh(source: str, first_data_row: int) -> Checkpoint:
        return Checkpoint(source=source, next_row=first_data_row)

    def record_task(self, list_name: str, completed: bool) -> None:
        counters = self.report.get(list_name)
        if counters is None:
            counters = ListCounters()
            self.report[list_name] = counters
        counters.record(completed)

    def report_as_dict(self) -> dict[str, dict[str, int]]:
        return {name: counters.to_dict() for name, counters in self.report.items()}
