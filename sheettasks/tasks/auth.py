from __future__ import annotations

from pathlib import Path
from typing import Any

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from sheettasks.models.config_models import GoogleConfig

"""OAuth helpers for the Google Tasks API (and gspread for gsheet sources).

The token file is created on first use through the installed-app flow and
refreshed afterwards. Both APIs share one token so a single consent screen
covers the export.
"""

SCOPES = [
    "https://www.googleapis.com/auth/tasks",
    "https://www.googleapis.com/auth/spreadsheets",
]


def load_credentials(cfg: GoogleConfig, scopes: list[str] | None = None) -> Credentials:
    scopes = scopes or SCOPES
    token_path = Path(cfg.token_file)
    creds = None
    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), scopes)

    if creds and creds.valid:
        return creds
    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
    else:
        flow = InstalledAppFlow.from_client_secrets_file(cfg.credentials_file, scopes)
        creds = flow.run_local_server(port=0)
    token_path.write_text(creds.to_json(), encoding="utf-8")
    return creds


def build_tasks_service(creds: Credentials) -> Any:
    return build("tasks", "v1", credentials=creds, cache_discovery=False)


def build_gspread_client(creds: Credentials) -> Any:
    import gspread

    return gspread.authorize(creds)
