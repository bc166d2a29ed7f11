from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pandas as pd

if TYPE_CHECKING:
    import gspread

"""Spreadsheet data source.

The export pipeline only needs three read-only operations on a sheet:
headers, last populated row and a contiguous slice of rows. A SheetSource is
a snapshot of one worksheet loaded either from a local .xlsx workbook
(pandas) or from Google Sheets (gspread).

Row numbers are 1-based like the spreadsheet UI: row 1 is the header row and
data starts at row 2.

Source identifiers have the form `<kind>:<location>#<sheet>`, e.g.
`excel:./data/tasks.xlsx#Tasks` or `gsheet:1AbC...xyz#Tasks`.
"""

__all__ = [
    "SheetHeaderError",
    "SheetNotFoundError",
    "MissingColumnsError",
    "SheetSource",
    "parse_source_identifier",
    "read_excel_sheet",
    "read_google_sheet",
]


class SheetHeaderError(Exception):
    """Raised when the header row is missing or empty."""

class SheetNotFoundError(Exception):
    """Raised when the workbook or worksheet referenced by a source does not exist."""

class MissingColumnsError(Exception):
    """Raised when required columns are missing in the sheet header."""


def _clean_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() != "" else None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _trim_trailing_empty(table: list[list[Any]]) -> list[list[Any]]:
    last = len(table)
    while last > 0 and all(c is None for c in table[last - 1]):
        last -= 1
    return table[:last]


@dataclass
class SheetSource:
    """Read-only snapshot of one worksheet."""
    identifier: str
    sheet_name: str
    table: list[list[Any]]  # table[0] = header row

    def get_headers(self) -> list[str]:
        if not self.table:
            raise SheetHeaderError(f"sheet '{self.sheet_name}' has no header row")
        return ["" if c is None else str(c).strip() for c in self.table[0]]

    def get_last_row(self) -> int:
        return len(self.table)

    def get_row_slice(self, start: int, count: int) -> list[list[Any]]:
        """Return `count` rows starting at 1-based row `start` (clipped at the last row)."""
        if start < 1:
            raise ValueError(f"row numbers are 1-based, got {start}")
        if count <= 0:
            return []
        return [list(r) for r in self.table[start - 1 : start - 1 + count]]


def parse_source_identifier(identifier: str) -> tuple[str, str, str]:
    """Split `<kind>:<location>#<sheet>` into its parts.

    Raises:
        ValueError: If the identifier does not follow the format.
    """
    kind, sep, rest = identifier.partition(":")
    if not sep or kind not in ("excel", "gsheet"):
        raise ValueError(f"unsupported source identifier: {identifier!r}")
    location, sep, sheet = rest.rpartition("#")
    if not sep or not location or not sheet:
        raise ValueError(f"source identifier lacks '#<sheet>': {identifier!r}")
    return kind, location, sheet


def read_excel_sheet(path: Path, sheet_name: str) -> SheetSource:
    """Load one worksheet of an .xlsx workbook without header inference."""
    if not path.exists():
        raise SheetNotFoundError(f"workbook not found: {path}")
    with pd.ExcelFile(path) as xls:
        if sheet_name not in [str(n) for n in xls.sheet_names]:
            raise SheetNotFoundError(f"sheet '{sheet_name}' not found in {path.name}")
        # ヘッダなしで生読み (1行目をヘッダとして後で扱う)
        df = xls.parse(sheet_name, header=None, dtype=object)
    table = [[_clean_cell(v) for v in raw] for raw in df.itertuples(index=False, name=None)]
    return SheetSource(
        identifier=f"excel:{path}#{sheet_name}",
        sheet_name=sheet_name,
        table=_trim_trailing_empty(table),
    )


def read_google_sheet(client: gspread.Client, spreadsheet_key: str, title: str) -> SheetSource:
    """Load one worksheet of a Google spreadsheet via gspread."""
    import gspread

    try:
        ws = client.open_by_key(spreadsheet_key).worksheet(title)
    except gspread.SpreadsheetNotFound as e:
        raise SheetNotFoundError(f"spreadsheet not found: {spreadsheet_key}") from e
    except gspread.WorksheetNotFound as e:
        raise SheetNotFoundError(f"sheet '{title}' not found in {spreadsheet_key}") from e
    table = [[_clean_cell(v) for v in row] for row in ws.get_all_values()]
    return SheetSource(
        identifier=f"gsheet:{spreadsheet_key}#{title}",
        sheet_name=title,
        table=_trim_trailing_empty(table),
    )
