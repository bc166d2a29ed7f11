from __future__ import annotations

import json
import re
from pathlib import Path

from sheettasks.logging.error_log import ErrorLogBuffer
from sheettasks.models.error_record import ErrorRecord


def test_error_record_create_and_json_line():
    record = ErrorRecord.create("excel:data/tasks.xlsx#Tasks", 7, "TASK_CREATE_FAILED", "quota exceeded")
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$", record.timestamp)
    payload = json.loads(record.to_json_line())
    assert payload == {
        "timestamp": record.timestamp,
        "source": "excel:data/tasks.xlsx#Tasks",
        "row": 7,
        "error_type": "TASK_CREATE_FAILED",
        "message": "quota exceeded",
    }


def test_json_line_keeps_non_ascii():
    record = ErrorRecord.create("src", 2, "LIST_UNRESOLVED", "リスト \"仕事\" を作成できません")
    assert "仕事" in record.to_json_line()


def test_flush_without_records_creates_nothing(tmp_path: Path):
    buffer = ErrorLogBuffer(tmp_path / "logs")
    assert buffer.flush() is None
    assert not (tmp_path / "logs").exists()


def test_flush_appends_to_one_file(tmp_path: Path):
    buffer = ErrorLogBuffer(tmp_path / "logs")
    buffer.append(ErrorRecord.create("src", 3, "NO_LIST_CONTEXT", "no list title has been found yet"))
    first = buffer.flush()
    buffer.append(ErrorRecord.create("src", 9, "EMPTY_TITLE_AND_ID", "both title and id are empty"))
    second = buffer.flush()

    assert first == second
    assert re.match(r"^errors-\d{8}-\d{6}\.log$", first.name)
    lines = first.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["row"] for line in lines] == [3, 9]
    assert len(buffer) == 0


def test_records_returns_copy(tmp_path: Path):
    buffer = ErrorLogBuffer(tmp_path)
    buffer.append(ErrorRecord.create("src", -1, "MISSING_COLUMNS", "no title"))
    buffer.records.clear()
    assert len(buffer.records) == 1


def test_run_level_record_has_no_row():
    record = ErrorRecord.for_run("excel:data/tasks.xlsx#Tasks", "CHECKPOINT_NO_SOURCE", "no source recorded")
    assert record.row == -1
    assert record.timestamp.endswith("Z")
