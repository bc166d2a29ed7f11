from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""Outbound task / task list models for the Google Tasks API."""

__all__ = [
    "STATUS_COMPLETED",
    "STATUS_NEEDS_ACTION",
    "Task",
    "TaskListRef",
]

STATUS_COMPLETED = "completed"
STATUS_NEEDS_ACTION = "needsAction"


@dataclass(frozen=True)
class TaskListRef:
    """A remote task list as returned by tasklists.list / tasklists.insert."""
    name: str
    remote_id: str


@dataclass(frozen=True)
class Task:
    """Task body sent once to the remote service.

    status None means "needs action" (the API default). due is an RFC 3339
    timestamp; the API only keeps the date part.
    """
    title: str
    status: str | None = None
    due: str | None = None
    notes: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"title": self.title}
        if self.status is not None:
            body["status"] = self.status
        if self.due is not None:
            body["due"] = self.due
        if self.notes is not None:
            body["notes"] = self.notes
        return body
