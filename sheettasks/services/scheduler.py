from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

"""Scheduler bridge: one-shot future re-invocation of the export handler.

A long export is split into many short invocations. After each batch the
runner asks the bridge for exactly one continuation; the bridge removes any
pending trigger registered for the handler before adding the new one, so
repeated calls never leave two pending continuations behind (two would mean
two batches over the same rows and duplicate tasks).

Hosts keep the triggers:
- FileTriggerHost: JSON file, read by `sheettasks worker`
- InMemoryTriggerHost: in-process list (tests, embedding)
"""

__all__ = [
    "HANDLER_ID",
    "FileTriggerHost",
    "InMemoryTriggerHost",
    "SchedulerBridge",
    "SchedulerHost",
    "Trigger",
]

logger = logging.getLogger(__name__)

HANDLER_ID = "continue_export"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Trigger:
    handler_id: str
    run_at: datetime

    def is_due(self, now: datetime) -> bool:
        return self.run_at <= now


class SchedulerHost(Protocol):
    def schedule_once(self, handler_id: str, delay_seconds: float) -> Trigger: ...
    def cancel_all(self, handler_id: str) -> int: ...
    def pending(self, handler_id: str) -> list[Trigger]: ...


class InMemoryTriggerHost:
    def __init__(self, now: Callable[[], datetime] = _utcnow) -> None:
        self.triggers: list[Trigger] = []
        self._now = now

    def schedule_once(self, handler_id: str, delay_seconds: float) -> Trigger:
        trigger = Trigger(handler_id, self._now() + timedelta(seconds=delay_seconds))
        self.triggers.append(trigger)
        return trigger

    def cancel_all(self, handler_id: str) -> int:
        before = len(self.triggers)
        self.triggers = [t for t in self.triggers if t.handler_id != handler_id]
        return before - len(self.triggers)

    def pending(self, handler_id: str) -> list[Trigger]:
        return sorted((t for t in self.triggers if t.handler_id == handler_id), key=lambda t: t.run_at)


class FileTriggerHost:
    """Triggers persisted as a JSON array of {"handler": ..., "run_at": ISO8601}."""

    def __init__(self, path: Path, now: Callable[[], datetime] = _utcnow) -> None:
        self.path = path
        self._now = now

    def _read(self) -> list[Trigger]:
        if not self.path.exists():
            return []
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        try:
            items = json.loads(raw)
            return [Trigger(i["handler"], datetime.fromisoformat(i["run_at"])) for i in items]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            # 壊れたトリガファイルは破棄 (次の reschedule で作り直される)
            logger.warning(f"ignoring unreadable trigger file {self.path}: {e}")
            return []

    def _write(self, triggers: list[Trigger]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        payload = [{"handler": t.handler_id, "run_at": t.run_at.isoformat()} for t in triggers]
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def schedule_once(self, handler_id: str, delay_seconds: float) -> Trigger:
        triggers = self._read()
        trigger = Trigger(handler_id, self._now() + timedelta(seconds=delay_seconds))
        triggers.append(trigger)
        self._write(triggers)
        return trigger

    def cancel_all(self, handler_id: str) -> int:
        triggers = self._read()
        kept = [t for t in triggers if t.handler_id != handler_id]
        if len(kept) != len(triggers):
            self._write(kept)
        return len(triggers) - len(kept)

    def pending(self, handler_id: str) -> list[Trigger]:
        return sorted((t for t in self._read() if t.handler_id == handler_id), key=lambda t: t.run_at)


class SchedulerBridge:
    """Idempotent continuation scheduling for one handler identity."""

    def __init__(
        self,
        host: SchedulerHost,
        handler_id: str = HANDLER_ID,
        delay_seconds: float = 60,
    ) -> None:
        self.host = host
        self.handler_id = handler_id
        self.delay_seconds = delay_seconds

    def reschedule(self) -> Trigger:
        """Ensure exactly one pending invocation, `delay_seconds` from now."""
        self.host.cancel_all(self.handler_id)
        trigger = self.host.schedule_once(self.handler_id, self.delay_seconds)
        logger.debug(f"continuation scheduled at {trigger.run_at.isoformat()}")
        return trigger

    def cancel_all(self) -> int:
        removed = self.host.cancel_all(self.handler_id)
        if removed:
            logger.debug(f"removed {removed} pending trigger(s) for {self.handler_id}")
        return removed

    def pending(self) -> list[Trigger]:
        return self.host.pending(self.handler_id)
