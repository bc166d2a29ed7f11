from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import pandas as pd

from sheettasks.models.task import STATUS_COMPLETED, Task
from sheettasks.sheet.reader import MissingColumnsError

"""Row classification for the export pipeline.

classify() looks at one sheet row and decides whether it defines a list,
describes a task or has to be skipped. It is a pure function of the row, the
resolved column positions, the list title carried forward from earlier rows
and the list marker token.

Every result carries `list_name`: the list title in effect after this row,
which the caller carries forward to the next row (and the next batch).
"""

__all__ = [
    "ColumnIndex",
    "ListMarker",
    "Skip",
    "TaskCandidate",
    "classify",
    "parse_due",
]

STARRED_TOKEN = "starred"
STARRED_PREFIX = "★ "
LINK_NOTE_PREFIX = "Link: "
_TOKEN_SPLIT = re.compile(r"[\s,;]+")

SKIP_NO_LIST = "NO_LIST_CONTEXT"
SKIP_EMPTY = "EMPTY_TITLE_AND_ID"


@dataclass(frozen=True)
class ColumnIndex:
    """Header name -> column position, resolved once per batch. -1 = absent."""
    title: int
    list_title: int = -1
    id: int = -1
    status: int = -1
    due: int = -1
    links: int = -1

    @staticmethod
    def from_headers(headers: list[str]) -> ColumnIndex:
        """Resolve column positions.

        Raises:
            MissingColumnsError: If the header has no 'title' column.
        """
        def pos(name: str) -> int:
            return headers.index(name) if name in headers else -1

        title = pos("title")
        if title == -1:
            raise MissingColumnsError(f"required column 'title' not found in header {headers}")
        return ColumnIndex(
            title=title,
            list_title=pos("list_title"),
            id=pos("id"),
            status=pos("status"),
            due=pos("due"),
            links=pos("links"),
        )


@dataclass(frozen=True)
class ListMarker:
    name: str
    list_name: str


@dataclass(frozen=True)
class TaskCandidate:
    list_name: str
    task: Task


@dataclass(frozen=True)
class Skip:
    reason: str
    message: str
    list_name: str | None


Classification = ListMarker | TaskCandidate | Skip


def _text(row: list[Any], index: int) -> str | None:
    """Trimmed cell text, or None when the column is absent or the cell empty."""
    if index < 0 or index >= len(row):
        return None
    value = row[index]
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        # Excel は数値 ID を float で返す (123.0 -> "123")
        value = int(value)
    text = str(value).strip()
    return text or None


def parse_due(value: Any) -> str | None:
    """Parse a due cell into an RFC 3339 midnight-UTC timestamp.

    Anything pandas cannot read as a date yields None; this never raises.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        ts = pd.to_datetime(value, errors="coerce", utc=True)
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return f"{ts.date().isoformat()}T00:00:00.000Z"


def _marker_name(title: str, marker: str, explicit: str | None) -> str:
    if explicit:
        return explicit
    return title[len(marker):].strip()


def classify(
    row: list[Any],
    columns: ColumnIndex,
    last_list_name: str | None,
    marker: str = "list:",
) -> Classification:
    list_cell = _text(row, columns.list_title)
    list_name = list_cell or last_list_name

    title = _text(row, columns.title)
    task_id = _text(row, columns.id)

    if title and title.lower().startswith(marker.lower()):
        name = _marker_name(title, marker, list_cell)
        if name:
            return ListMarker(name=name, list_name=name)
        return Skip(SKIP_NO_LIST, "list definition row without a list name", list_name)

    if not list_name:
        return Skip(SKIP_NO_LIST, "no list title has been found yet", None)

    final_title = title or task_id
    if not final_title:
        return Skip(SKIP_EMPTY, "both title and id are empty", list_name)

    status_cell = _text(row, columns.status)
    status = STATUS_COMPLETED if status_cell and status_cell.lower() == STATUS_COMPLETED else None

    due = parse_due(row[columns.due]) if 0 <= columns.due < len(row) else None

    links = _text(row, columns.links)
    notes = None
    if links:
        if STARRED_TOKEN in _TOKEN_SPLIT.split(links.lower()):
            final_title = STARRED_PREFIX + final_title
        if links.lower() != STARRED_TOKEN:
            notes = f"{LINK_NOTE_PREFIX}{links}"

    return TaskCandidate(
        list_name=list_name,
        task=Task(title=final_title, status=status, due=due, notes=notes),
    )
