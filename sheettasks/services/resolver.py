from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sheettasks.models.task import Task, TaskListRef
from sheettasks.tasks.client import TaskServiceError

"""Task list name -> remote id resolution.

The Tasks API has no atomic find-or-create, and a list created a moment ago
may not show up in tasklists.list yet. resolve() therefore:

1. returns the cached id when the name is known (no remote call);
2. otherwise creates the list and writes the new id through to the cache;
3. if the create fails, waits `backoff_seconds`, lists every remote list and
   scans for an exact title match.

Failure is returned as an Unresolved value; nothing here raises for an
expected remote failure.
"""

__all__ = [
    "Resolved",
    "TaskListResolver",
    "TaskService",
    "Unresolved",
]

logger = logging.getLogger(__name__)


class TaskService(Protocol):
    def list_all(self) -> list[TaskListRef]: ...
    def create_list(self, name: str) -> str | None: ...
    def create_task(self, list_id: str, task: Task) -> str | None: ...


@dataclass(frozen=True)
class Resolved:
    list_id: str
    created: bool = False


@dataclass(frozen=True)
class Unresolved:
    reason: str


class TaskListResolver:
    def __init__(
        self,
        service: TaskService,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service = service
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def refresh(self, cache: dict[str, str]) -> bool:
        """Overwrite cache entries with the remote lists (remote wins).

        Returns False when the remote could not be listed; the cache is left
        untouched in that case.
        """
        try:
            remote = self.service.list_all()
        except TaskServiceError as e:
            logger.warning(f"Could not retrieve task lists to update cache: {e}. Proceeding with stored cache.")
            return False
        for ref in remote:
            cache[ref.name] = ref.remote_id
        logger.debug(f"list cache refreshed: {len(remote)} remote lists")
        return True

    def resolve(self, name: str, cache: dict[str, str]) -> Resolved | Unresolved:
        cached = cache.get(name)
        if cached:
            return Resolved(list_id=cached)

        try:
            created_id = self.service.create_list(name)
        except TaskServiceError as e:
            logger.warning(
                f"Could not create list \"{name}\" (it may already exist): {e}. "
                "Attempting to find it by re-fetching all lists."
            )
            return self._find_after_race(name, cache)

        if not created_id:
            logger.warning(f"Failed to create task list \"{name}\" - API did not return an ID.")
            return Unresolved(reason="create returned no id")

        cache[name] = created_id
        logger.info(f"Created new task list and added to cache: \"{name}\"")
        return Resolved(list_id=created_id, created=True)

    def _find_after_race(self, name: str, cache: dict[str, str]) -> Resolved | Unresolved:
        self._sleep(self.backoff_seconds)
        try:
            remote = self.service.list_all()
        except TaskServiceError as e:
            logger.warning(f"Failed to re-fetch task lists: {e}")
            return Unresolved(reason=f"re-fetch failed: {e}")

        for ref in remote:
            if ref.name == name:
                cache[name] = ref.remote_id
                logger.info(f"Found existing list \"{name}\" after re-fetching.")
                return Resolved(list_id=ref.remote_id)

        logger.warning(f"Still could not find task list \"{name}\" after re-fetching.")
        return Unresolved(reason="not found after create failure")
