from __future__ import annotations

from typing import Any

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from sheettasks.models.task import Task, TaskListRef

"""Thin wrapper over the Google Tasks v1 discovery client.

Only the three calls the exporter needs are exposed. Every API, transport or
credential failure is re-raised as TaskServiceError so call sites catch a
single type; the batch runner and resolver turn those into "skip and log".
"""

__all__ = [
    "GoogleTasksClient",
    "TaskServiceError",
]

# API / 通信層 (httplib2) / 認証 (token refresh) の失敗
_REMOTE_ERRORS = (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError)


class TaskServiceError(Exception):
    """Remote task/list call failed (quota, duplicate-name race, network ...)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _wrap(e: Exception, action: str) -> TaskServiceError:
    if isinstance(e, HttpError):
        status = getattr(e.resp, "status", None)
        return TaskServiceError(f"{action} failed ({status}): {e}", status=status)
    return TaskServiceError(f"{action} failed: {e}")


class GoogleTasksClient:
    """Google Tasks remote service.

    `service` is the object returned by googleapiclient.discovery.build("tasks", "v1").
    """

    def __init__(self, service: Any, page_size: int = 100) -> None:
        self._service = service
        self._page_size = page_size

    def list_all(self) -> list[TaskListRef]:
        """Enumerate every task list of the account (all pages)."""
        refs: list[TaskListRef] = []
        page_token = None
        try:
            while True:
                resp = (
                    self._service.tasklists()
                    .list(maxResults=self._page_size, pageToken=page_token)
                    .execute()
                )
                for item in resp.get("items", []) or []:
                    if item.get("id"):
                        refs.append(TaskListRef(name=item.get("title", ""), remote_id=item["id"]))
                page_token = resp.get("nextPageToken")
                if not page_token:
                    break
        except _REMOTE_ERRORS as e:
            raise _wrap(e, "tasklists.list") from e
        return refs

    def create_list(self, name: str) -> str | None:
        """Create a task list; returns its id, or None if the API returned none."""
        try:
            created = self._service.tasklists().insert(body={"title": name}).execute()
        except _REMOTE_ERRORS as e:
            raise _wrap(e, f"tasklists.insert '{name}'") from e
        return (created or {}).get("id")

    def create_task(self, list_id: str, task: Task) -> str | None:
        try:
            created = (
                self._service.tasks()
                .insert(tasklist=list_id, body=task.to_body())
                .execute()
            )
        except _REMOTE_ERRORS as e:
            raise _wrap(e, f"tasks.insert '{task.title}'") from e
        return (created or {}).get("id")
