"""Domain models for the sheet -> Google Tasks exporter.

This package contains the value objects passed between the classifier,
resolver, batch runner and the checkpoint store.
"""

from .batch_result import BatchResult, RunState
from .checkpoint import Checkpoint, ListCounters
from .config_models import (
    CheckpointConfig,
    ExportConfig,
    ExportSettings,
    GoogleConfig,
    SchedulerConfig,
    SourceConfig,
)
from .error_record import ErrorRecord
from .task import Task, TaskListRef

__all__ = [
    # Configuration models
    "CheckpointConfig",
    "ExportConfig",
    "ExportSettings",
    "GoogleConfig",
    "SchedulerConfig",
    "SourceConfig",
    # Processing models
    "BatchResult",
    "Checkpoint",
    "ErrorRecord",
    "ListCounters",
    "RunState",
    "Task",
    "TaskListRef",
]
