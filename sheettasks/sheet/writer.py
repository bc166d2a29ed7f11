from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd

"""Workbook writing helpers shared by the JSON import and the report sheet."""

__all__ = [
    "excel_writer",
    "write_sheet",
]


def excel_writer(workbook: Path) -> pd.ExcelWriter:
    """Open an openpyxl-backed writer; existing workbooks are appended to."""
    workbook.parent.mkdir(parents=True, exist_ok=True)
    if workbook.exists():
        return pd.ExcelWriter(workbook, engine="openpyxl", mode="a", if_sheet_exists="replace")
    return pd.ExcelWriter(workbook, engine="openpyxl", mode="w")


def write_sheet(df: pd.DataFrame, workbook: Path, sheet_name: str, **to_excel_kwargs: Any) -> None:
    """Write df to `sheet_name`, replacing that sheet if it already exists."""
    with excel_writer(workbook) as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False, **to_excel_kwargs)
