from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the sheet -> Google Tasks exporter.

These are the domain models produced by the loader
(`sheettasks.config.loader.load_config`). The loader owns YAML parsing,
schema validation and environment overrides; everything downstream only
sees these frozen objects.
"""

DEFAULT_BATCH_SIZE = 100
DEFAULT_API_DELAY_MS = 500
DEFAULT_LIST_RACE_BACKOFF_MS = 2000
DEFAULT_RESCHEDULE_DELAY_SEC = 60
DEFAULT_LIST_MARKER = "list:"
DEFAULT_FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class SourceConfig:
    """Spreadsheet that an export run reads from.

    kind is "excel" (local .xlsx workbook) or "gsheet" (Google Sheets).
    location is a file path for excel and a spreadsheet key for gsheet.
    """
    kind: str
    location: str
    sheet: str

    @property
    def identifier(self) -> str:
        return f"{self.kind}:{self.location}#{self.sheet}"


@dataclass(frozen=True)
class GoogleConfig:
    """OAuth files used for the Tasks API (and gspread when kind=gsheet)."""
    credentials_file: str
    token_file: str


@dataclass(frozen=True)
class CheckpointConfig:
    backend: str  # "file" | "postgres"
    path: str | None = None
    dsn: str | None = None
    table: str = "sheettasks_checkpoint"


@dataclass(frozen=True)
class SchedulerConfig:
    trigger_file: str
    poll_seconds: float = 5.0


@dataclass(frozen=True)
class ExportSettings:
    """Tunables for one batch invocation."""
    batch_size: int = DEFAULT_BATCH_SIZE
    api_delay_ms: int = DEFAULT_API_DELAY_MS
    list_race_backoff_ms: int = DEFAULT_LIST_RACE_BACKOFF_MS
    reschedule_delay_sec: int = DEFAULT_RESCHEDULE_DELAY_SEC
    list_marker: str = DEFAULT_LIST_MARKER
    first_data_row: int = DEFAULT_FIRST_DATA_ROW

    @property
    def api_delay_seconds(self) -> float:
        return self.api_delay_ms / 1000.0

    @property
    def list_race_backoff_seconds(self) -> float:
        return self.list_race_backoff_ms / 1000.0


@dataclass(frozen=True)
class ExportConfig:
    """Root configuration object loaded from config/export.yml."""
    source: SourceConfig
    google: GoogleConfig
    checkpoint: CheckpointConfig
    scheduler: SchedulerConfig
    export: ExportSettings = field(default_factory=ExportSettings)
