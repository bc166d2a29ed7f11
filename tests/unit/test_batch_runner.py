from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from sheettasks.models.batch_result import RunState
from sheettasks.models.checkpoint import Checkpoint
from sheettasks.services.batch_runner import CheckpointError, process_batch
from sheettasks.services.classifier import ColumnIndex
from sheettasks.services.resolver import TaskListResolver
from sheettasks.sheet.reader import MissingColumnsError
from sheettasks.store.checkpoint_store import CheckpointStore, MemoryStore, StoreError

HEADERS = ["title", "id", "status", "due", "links"]
SRC = "excel:data/tasks.xlsx#Tasks"


def _error_lines(tmp_path: Path) -> list[dict]:
    lines: list[dict] = []
    for f in sorted((tmp_path / "logs").glob("errors-*.log")):
        lines.extend(json.loads(line) for line in f.read_text(encoding="utf-8").splitlines())
    return lines


def _run_to_completion(runner, source=SRC):
    results = [runner.start(source)]
    while not results[-1].finished:
        results.append(runner.run_batch())
    return results


def test_marker_and_task_scenario(make_sheet, make_runner, fake_service, report_writer):
    sheet = make_sheet(HEADERS, [
        ["List: Work", "list1"],
        ["Buy milk", "", "needsAction", "", "http://x"],
    ])
    runner = make_runner(sheet, report_writer=report_writer)

    result = runner.start(SRC)

    assert result.state is RunState.FINALIZED
    assert result.processed_rows == 2
    assert result.created_tasks == 1
    assert result.skipped_rows == 0
    assert result.failed_rows == 0
    assert list(fake_service.lists) == ["Work"]
    list_id, task = fake_service.tasks[0]
    assert list_id == fake_service.lists["Work"]
    assert task.title == "Buy milk"
    assert task.notes == "Link: http://x"
    assert task.status is None
    assert report_writer.calls == [(SRC, {"Work": {"total": 1, "completed": 0, "needsAction": 1}})]


def test_finalize_clears_checkpoint_and_triggers(make_sheet, make_runner):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"], ["Task"]]))
    runner.start(SRC)
    assert runner.store.kv.data == {}
    assert runner.scheduler.pending() == []


def test_list_name_carries_across_batches(make_sheet, make_runner, fake_service):
    rows = [["List: Work"]] + [[f"task {i}"] for i in range(3, 102)]
    rows += [[f"later {i}"] for i in range(102, 202)]
    sheet = make_sheet(HEADERS, rows)
    runner = make_runner(sheet)

    first = runner.start(SRC)

    assert first.state is RunState.RESCHEDULED
    assert first.next_row == 102
    assert len(runner.scheduler.pending()) == 1
    saved = runner.store.load(first_data_row=2)
    assert saved.last_list_name == "Work"
    assert saved.next_row == 102

    second = runner.run_batch()

    assert second.state is RunState.FINALIZED
    assert second.start_row == 102
    assert second.created_tasks == 100
    assert second.skipped_rows == 0
    titles = fake_service.titles_in("Work")
    assert len(titles) == 199
    assert titles[-1] == "later 201"


def test_resume_gives_same_counts_as_single_pass(
    make_sheet, make_runner, service_factory, fast_settings
):
    rows = [
        ["orphan before any list"],
        ["List: Work"],
        ["Write report", None, "completed"],
        ["Call Bob"],
        [None, None, "completed"],
        ["List: Home"],
        ["Water plants", None, "needsAction", "2024-05-01"],
        [None, "id-7"],
        ["Fix sink", None, "completed", "garbage"],
        ["list: Work"],
        ["Review PR", None, None, None, "starred"],
        ["list:"],
        ["Still work"],
    ]
    sheet = make_sheet(HEADERS, rows)

    single = make_runner(sheet, service=service_factory(), settings=replace(fast_settings, batch_size=1000))
    single_results = _run_to_completion(single)
    assert len(single_results) == 1

    assert single_results[0].created_tasks == 7
    assert single_results[0].skipped_rows == 3

    for batch_size in (1, 3, 5):
        runner = make_runner(sheet, service=service_factory(), settings=replace(fast_settings, batch_size=batch_size))
        results = _run_to_completion(runner)
        assert len(results) > 1
        assert sum(r.created_tasks for r in results) == 7
        assert sum(r.skipped_rows for r in results) == 3
        assert sum(r.processed_rows for r in results) == len(rows)


def test_resume_report_matches(make_sheet, make_runner, service_factory, fast_settings, report_writer):
    rows = [["List: A"], ["a1", None, "completed"], ["a2"], ["List: B"], ["b1"], ["List: A"], ["a3"]]
    sheet = make_sheet(HEADERS, rows)

    _run_to_completion(make_runner(
        sheet, service=service_factory(), settings=replace(fast_settings, batch_size=100), report_writer=report_writer
    ))
    _run_to_completion(make_runner(
        sheet, service=service_factory(), settings=replace(fast_settings, batch_size=2), report_writer=report_writer
    ))

    one_pass, batched = (report for _, report in report_writer.calls)
    assert one_pass == batched == {
        "A": {"total": 3, "completed": 1, "needsAction": 2},
        "B": {"total": 1, "completed": 0, "needsAction": 1},
    }


def test_cursor_is_monotonic(make_sheet, make_runner, fast_settings):
    rows = [["List: Work"]] + [[f"t{i}"] for i in range(10)]
    runner = make_runner(make_sheet(HEADERS, rows), settings=replace(fast_settings, batch_size=4))
    results = _run_to_completion(runner)

    previous = 2
    for r in results:
        assert r.start_row == previous
        assert r.next_row > r.start_row
        previous = r.next_row
    assert results[-1].next_row == 13


def test_title_falls_back_to_id_and_empty_row_is_skipped(make_sheet, make_runner, fake_service, tmp_path):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"], [None, "abc"], [None, None, "completed"]]))
    result = runner.start(SRC)

    assert [t.title for _, t in fake_service.tasks] == ["abc"]
    assert result.skipped_rows == 1
    errors = _error_lines(tmp_path)
    assert [(e["row"], e["error_type"]) for e in errors] == [(4, "EMPTY_TITLE_AND_ID")]


def test_unparseable_due_still_creates_task(make_sheet, make_runner, fake_service):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"], ["Pay rent", None, None, "31/31/2024"]]))
    result = runner.start(SRC)
    assert result.created_tasks == 1
    assert fake_service.tasks[0][1].due is None


def test_rows_before_any_list_are_skipped(make_sheet, make_runner, fake_service, tmp_path):
    runner = make_runner(make_sheet(HEADERS, [["no list yet"], ["List: Work"], ["ok"]]))
    result = runner.start(SRC)
    assert result.skipped_rows == 1
    assert result.created_tasks == 1
    assert _error_lines(tmp_path)[0]["error_type"] == "NO_LIST_CONTEXT"


def test_unresolved_list_fails_row_and_continues(make_sheet, make_runner, fake_service, tmp_path):
    fake_service.fail_create_list.add("Broken")
    rows = [["List: Broken"], ["lost task"], ["List: Work"], ["kept task"]]
    result = make_runner(make_sheet(HEADERS, rows)).start(SRC)

    assert result.state is RunState.FINALIZED
    assert result.failed_rows == 1
    assert result.created_tasks == 1
    assert [e["error_type"] for e in _error_lines(tmp_path)] == ["LIST_UNRESOLVED"]


def test_task_create_failure_is_skipped_without_retry(make_sheet, make_runner, fake_service, tmp_path, report_writer):
    fake_service.fail_task_titles.add("bad")
    rows = [["List: Work"], ["bad"], ["good"]]
    result = make_runner(make_sheet(HEADERS, rows), report_writer=report_writer).start(SRC)

    assert result.failed_rows == 1
    assert fake_service.calls["create_task"] == 2
    assert report_writer.calls[0][1] == {"Work": {"total": 1, "completed": 0, "needsAction": 1}}
    errors = _error_lines(tmp_path)
    assert errors[0]["row"] == 3
    assert errors[0]["error_type"] == "TASK_CREATE_FAILED"


def test_existing_remote_list_is_reused(make_sheet, make_runner, fake_service):
    fake_service.lists["Work"] = "L-existing"
    make_runner(make_sheet(HEADERS, [["List: Work"], ["task"]])).start(SRC)
    assert fake_service.calls["create_list"] == 0
    assert fake_service.tasks[0][0] == "L-existing"


def test_refresh_failure_proceeds_with_stored_cache(make_sheet, make_runner, fake_service):
    fake_service.fail_list_all = True
    result = make_runner(make_sheet(HEADERS, [["List: Work"], ["task"]])).start(SRC)
    assert result.created_tasks == 1
    assert fake_service.calls["create_list"] == 1


def test_missing_title_column_aborts_and_clears(make_sheet, make_runner, tmp_path):
    runner = make_runner(make_sheet(["id", "status"], [["1", "completed"]]))
    runner.scheduler.reschedule()

    with pytest.raises(MissingColumnsError):
        runner.start(SRC)

    assert runner.store.kv.data == {}
    assert runner.scheduler.pending() == []
    errors = _error_lines(tmp_path)
    assert errors[0]["error_type"] == "MISSING_COLUMNS"
    assert errors[0]["row"] == -1


def test_missing_source_in_checkpoint_is_fatal(make_sheet, make_runner):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"]]))
    runner.scheduler.reschedule()

    with pytest.raises(CheckpointError):
        runner.run_batch()

    assert runner.scheduler.pending() == []


def test_unknown_source_is_fatal(make_sheet, make_runner):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"]]))
    runner.store.begin("excel:elsewhere.xlsx#Other")
    with pytest.raises(CheckpointError):
        runner.run_batch()
    assert runner.scheduler.pending() == []


def test_cursor_past_last_row_finalizes_immediately(make_sheet, make_runner, fake_service, report_writer):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"], ["t"]]), report_writer=report_writer)
    runner.store.begin(SRC)
    runner.store.kv.set("lastProcessedRow", "50")

    result = runner.run_batch()

    assert result.state is RunState.FINALIZED
    assert result.processed_rows == 0
    assert fake_service.calls["create_task"] == 0
    assert runner.store.kv.data == {}
    assert report_writer.calls == [(SRC, {})]


def test_report_writer_failure_still_clears(make_sheet, make_runner):
    class Failing:
        def write(self, source, report, now):
            raise RuntimeError("sheet quota")

    runner = make_runner(make_sheet(HEADERS, [["List: Work"], ["t"]]), report_writer=Failing())
    result = runner.start(SRC)
    assert result.finished
    assert runner.store.kv.data == {}


def test_checkpoint_write_failure_is_fatal(make_sheet, make_runner):
    class ReadOnlyStore(MemoryStore):
        def set(self, key, value):
            if key == "lastProcessedRow":
                raise StoreError("disk full")
            super().set(key, value)

    rows = [["List: Work"]] + [[f"t{i}"] for i in range(5)]
    runner = make_runner(make_sheet(HEADERS, rows), store=CheckpointStore(ReadOnlyStore()))
    with pytest.raises(CheckpointError):
        runner.start(SRC)
    assert runner.scheduler.pending() == []


def test_start_discards_previous_run(make_sheet, make_runner, fake_service):
    runner = make_runner(make_sheet(HEADERS, [["List: Work"], ["t"]]))
    runner.store.begin("excel:old.xlsx#Old")
    runner.store.kv.set("lastProcessedRow", "999")
    runner.store.kv.set("lastKnownListTitle", "Stale")

    result = runner.start(SRC)

    assert result.created_tasks == 1
    assert fake_service.titles_in("Work") == ["t"]


def test_process_batch_does_not_mutate_input_and_sleeps_per_task(fake_service, fast_settings):
    cp = Checkpoint.fresh(SRC, 2)
    rows = [["List: Work"], ["a"], [None, None], ["b"]]
    sleeps: list[float] = []
    settings = replace(fast_settings, api_delay_ms=500)

    new_cp, counters = process_batch(
        cp,
        rows,
        ColumnIndex.from_headers(HEADERS),
        TaskListResolver(fake_service, sleep=sleeps.append),
        fake_service,
        settings,
        sleep=sleeps.append,
    )

    assert cp.next_row == 2
    assert cp.list_cache == {}
    assert cp.report == {}
    assert new_cp.next_row == 6
    assert new_cp.last_list_name == "Work"
    assert counters.processed == 4
    assert counters.created == 2
    assert counters.skipped == 1
    assert sleeps == [0.5, 0.5]
