from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import pandas as pd

from sheettasks.models.batch_result import BatchResult
from sheettasks.sheet.reader import parse_source_identifier
from sheettasks.sheet.writer import excel_writer

"""Run report and SUMMARY line rendering.

At the end of a run the accumulated per-list counters are written to a new
"<sheet> Report <timestamp>" sheet next to the exported sheet. Every batch
(finished or not) also produces one SUMMARY log line.
"""

__all__ = [
    "REPORT_HEADERS",
    "ExcelReportWriter",
    "GoogleSheetReportWriter",
    "ReportWriter",
    "build_report_table",
    "render_summary_line",
    "report_sheet_name",
]

REPORT_TITLE = "Task Import Summary"
REPORT_HEADERS = ["Task List", "Total Imported", "Completed", "Needs Action"]
EMPTY_REPORT_ROW = ["No new tasks were imported.", "", "", ""]
SHEET_TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
MAX_SHEET_NAME = 31  # Excel のシート名上限


def _format_number(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # Format very small numbers to avoid scientific notation
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: BatchResult) -> str:
    """Render the SUMMARY line of one batch.

    Format:
    SUMMARY state={state} rows={processed} created={created} skipped={skipped}
    failed={failed} next_row={next_row} last_row={last_row} elapsed_sec={elapsed}
    """
    return (
        f"SUMMARY state={result.state.value} "
        f"rows={result.processed_rows} "
        f"created={result.created_tasks} "
        f"skipped={result.skipped_rows} "
        f"failed={result.failed_rows} "
        f"next_row={result.next_row} "
        f"last_row={result.last_row} "
        f"elapsed_sec={_format_number(result.elapsed_seconds)}"
    )


def build_report_table(report: dict[str, dict[str, int]]) -> pd.DataFrame:
    """One row per list; a single placeholder row when nothing was imported."""
    if not report:
        return pd.DataFrame([EMPTY_REPORT_ROW], columns=REPORT_HEADERS)
    rows = [
        [name, stats.get("total", 0), stats.get("completed", 0), stats.get("needsAction", 0)]
        for name, stats in report.items()
    ]
    return pd.DataFrame(rows, columns=REPORT_HEADERS)


def report_sheet_name(sheet: str, now: datetime) -> str:
    suffix = f" Report {now.strftime(SHEET_TIMESTAMP_FMT)}"
    return f"{sheet[: MAX_SHEET_NAME - len(suffix)]}{suffix}"


class ReportWriter(Protocol):
    def write(self, source: str, report: dict[str, dict[str, int]], now: datetime) -> str: ...


class ExcelReportWriter:
    """Adds the report sheet to the exported .xlsx workbook."""

    def write(self, source: str, report: dict[str, dict[str, int]], now: datetime) -> str:
        _, location, sheet = parse_source_identifier(source)
        name = report_sheet_name(sheet, now)
        table = build_report_table(report)
        with excel_writer(Path(location)) as writer:
            # 1行目: タイトル, 2行目: 生成日時, 4行目からテーブル
            table.to_excel(writer, sheet_name=name, index=False, startrow=3)
            ws = writer.sheets[name]
            ws["A1"] = REPORT_TITLE
            ws["A2"] = "Generated on:"
            ws["B2"] = now.strftime("%Y-%m-%d %H:%M:%S")
        return name


class GoogleSheetReportWriter:
    """Adds the report worksheet to the exported Google spreadsheet."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def write(self, source: str, report: dict[str, dict[str, int]], now: datetime) -> str:
        _, key, sheet = parse_source_identifier(source)
        name = report_sheet_name(sheet, now)
        table = build_report_table(report)
        values: list[list[Any]] = [
            [REPORT_TITLE],
            ["Generated on:", now.strftime("%Y-%m-%d %H:%M:%S")],
            [],
            REPORT_HEADERS,
            *[[v if isinstance(v, str) else int(v) for v in row] for row in table.itertuples(index=False, name=None)],
        ]
        spreadsheet = self._client.open_by_key(key)
        ws = spreadsheet.add_worksheet(title=name, rows=max(len(values), 10), cols=len(REPORT_HEADERS))
        ws.update(range_name="A1", values=values)
        return name
