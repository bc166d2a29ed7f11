# Shared pytest fixtures
from __future__ import annotations
import logging
import tempfile
from pathlib import Path
from typing import Any

import pytest

from sheettasks.logging.error_log import ErrorLogBuffer
from sheettasks.logging.init import LOGGER_NAME, reset_logging
from sheettasks.models.config_models import ExportSettings
from sheettasks.models.task import Task, TaskListRef
from sheettasks.services.batch_runner import BatchRunner
from sheettasks.services.scheduler import InMemoryTriggerHost, SchedulerBridge
from sheettasks.sheet.reader import SheetNotFoundError, SheetSource
from sheettasks.store.checkpoint_store import CheckpointStore, MemoryStore
from sheettasks.tasks.client import TaskServiceError

SOURCE_ID = "excel:data/tasks.xlsx#Tasks"


@pytest.fixture(autouse=True)
def _clean_logging():
    # setup_logging() を呼んだテストの handler / propagate=False を次へ持ち越さない
    reset_logging()
    logger = logging.getLogger(LOGGER_NAME)
    for h in logger.handlers[:]:
        logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source:
  kind: excel
  location: data/tasks.xlsx
  sheet: Tasks
google:
  credentials_file: credentials.json
  token_file: token.json
checkpoint:
  backend: file
  path: state/checkpoint.json
scheduler:
  trigger_file: state/triggers.json
  poll_seconds: 0.01
export:
  batch_size: 100
  api_delay_ms: 0
  list_race_backoff_ms: 0
  reschedule_delay_sec: 0
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "export.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


class FakeTaskService:
    """In-memory stand-in for the Google Tasks service."""

    def __init__(self, lists: dict[str, str] | None = None) -> None:
        self.lists: dict[str, str] = dict(lists or {})
        self.tasks: list[tuple[str, Task]] = []
        self.fail_create_list: set[str] = set()
        self.create_list_returns_none: set[str] = set()
        self.fail_task_titles: set[str] = set()
        self.fail_list_all = False
        self.calls = {"list_all": 0, "create_list": 0, "create_task": 0}

    def list_all(self) -> list[TaskListRef]:
        self.calls["list_all"] += 1
        if self.fail_list_all:
            raise TaskServiceError("tasklists.list failed (403): quota exceeded", status=403)
        return [TaskListRef(name=n, remote_id=i) for n, i in self.lists.items()]

    def create_list(self, name: str) -> str | None:
        self.calls["create_list"] += 1
        if name in self.fail_create_list:
            raise TaskServiceError(f"tasklists.insert '{name}' failed (409): duplicate", status=409)
        if name in self.create_list_returns_none:
            return None
        new_id = f"L{len(self.lists) + 1}"
        self.lists[name] = new_id
        return new_id

    def create_task(self, list_id: str, task: Task) -> str | None:
        self.calls["create_task"] += 1
        if task.title in self.fail_task_titles:
            raise TaskServiceError(f"tasks.insert '{task.title}' failed (500): backend error", status=500)
        self.tasks.append((list_id, task))
        return f"T{len(self.tasks)}"

    def titles_in(self, list_name: str) -> list[str]:
        list_id = self.lists[list_name]
        return [t.title for lid, t in self.tasks if lid == list_id]


@pytest.fixture()
def fake_service() -> FakeTaskService:
    return FakeTaskService()


def _make_sheet(headers: list[str], rows: list[list[Any]], identifier: str = SOURCE_ID) -> SheetSource:
    return SheetSource(identifier=identifier, sheet_name="Tasks", table=[list(headers)] + [list(r) for r in rows])


@pytest.fixture()
def make_sheet():
    return _make_sheet


@pytest.fixture()
def fast_settings() -> ExportSettings:
    return ExportSettings(api_delay_ms=0, list_race_backoff_ms=0, reschedule_delay_sec=60)


@pytest.fixture()
def make_runner(tmp_path: Path, fake_service: FakeTaskService, fast_settings: ExportSettings):
    """Factory: BatchRunner over MemoryStore + InMemoryTriggerHost for one sheet."""

    def _make(
        sheet: SheetSource,
        *,
        service: Any = None,
        settings: ExportSettings | None = None,
        report_writer: Any = None,
        store: CheckpointStore | None = None,
    ) -> BatchRunner:
        def open_source(identifier: str) -> SheetSource:
            if identifier != sheet.identifier:
                raise SheetNotFoundError(f"unknown source {identifier}")
            return sheet

        return BatchRunner(
            store=store or CheckpointStore(MemoryStore()),
            scheduler=SchedulerBridge(InMemoryTriggerHost(), delay_seconds=60),
            service=service or fake_service,
            open_source=open_source,
            settings=settings or fast_settings,
            report_writer=report_writer,
            sleep=lambda s: None,
            error_log=ErrorLogBuffer(tmp_path / "logs"),
        )

    return _make


@pytest.fixture()
def service_factory():
    return FakeTaskService


class RecordingReportWriter:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, dict[str, int]]]] = []

    def write(self, source: str, report: dict[str, dict[str, int]], now: Any) -> str:
        self.calls.append((source, report))
        return f"Tasks Report {len(self.calls)}"


@pytest.fixture()
def report_writer() -> RecordingReportWriter:
    return RecordingReportWriter()
