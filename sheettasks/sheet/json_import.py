from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from sheettasks.sheet.writer import write_sheet

"""Flatten a Google Tasks JSON export into spreadsheet rows.

Input is a JSON array of task lists:

    [{"title": "Work", "id": "L1", "items": [{"id": "t1", "title": "...", ...}]}]

Output is a table with one row per task (list title / id repeated on every
row) and one placeholder row for each list without tasks. The placeholder
keeps the list visible in the sheet; exporting skips it as an empty row,
so no remote list is created for it.
"""

__all__ = [
    "ORDERED_HEADERS",
    "JsonImportError",
    "flatten_task_lists",
    "import_json_file",
]

ORDERED_HEADERS = [
    "list_title", "list_id", "id", "title", "status", "created", "updated",
    "due", "links", "task_type", "kind", "selfLink",
]


class JsonImportError(Exception):
    pass


def _cell(value: Any) -> Any:
    # links 等のネスト値は JSON 文字列としてセルに格納
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def flatten_task_lists(data: Any) -> pd.DataFrame:
    """Build the sheet table from parsed JSON.

    Columns follow ORDERED_HEADERS, restricted to keys that appear on a list
    or on any of its items (list_title / list_id are present whenever the
    lists carry title / id).

    Raises:
        JsonImportError: If data is not a non-empty array of objects.
    """
    if not isinstance(data, list) or not data:
        raise JsonImportError("Invalid JSON data. Expected a non-empty array of objects.")

    seen: set[str] = set()
    for item in data:
        if not isinstance(item, dict):
            raise JsonImportError("Invalid JSON data. Expected a non-empty array of objects.")
        seen.update(item.keys())
        if "title" in item:
            seen.add("list_title")
        if "id" in item:
            seen.add("list_id")
        for task in item.get("items") or []:
            if isinstance(task, dict):
                seen.update(task.keys())
    headers = [h for h in ORDERED_HEADERS if h in seen]

    rows: list[list[Any]] = []
    for task_list in data:
        list_title = task_list.get("title", "")
        list_id = task_list.get("id", "")
        items = [t for t in (task_list.get("items") or []) if isinstance(t, dict)]
        if not items:
            rows.append([
                list_title if h == "list_title" else list_id if h == "list_id" else ""
                for h in headers
            ])
            continue
        for task in items:
            row = []
            for h in headers:
                if h == "list_title":
                    row.append(list_title)
                elif h == "list_id":
                    row.append(list_id)
                else:
                    row.append(_cell(task.get(h, "")))
            rows.append(row)

    return pd.DataFrame(rows, columns=headers)


def import_json_file(json_path: Path, workbook: Path, sheet_name: str) -> int:
    """Import a JSON export file into `workbook`/`sheet_name`.

    Returns:
        Number of data rows written.
    """
    try:
        data = json.loads(json_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise JsonImportError(f"cannot read {json_path}: {e}") from e
    df = flatten_task_lists(data)
    write_sheet(df, workbook, sheet_name)
    return len(df)
