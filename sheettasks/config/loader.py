from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from sheettasks.models.config_models import (
    CheckpointConfig,
    ExportConfig,
    ExportSettings,
    GoogleConfig,
    SchedulerConfig,
    SourceConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config (default: config/export.yml)
- Validate against config_schema.json (shipped next to this module)
- Apply defaults for optional sections
- Apply environment overrides (.env is loaded by the CLI before this runs)
"""

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/export.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _checkpoint_config(raw: dict[str, Any]) -> CheckpointConfig:
    backend = raw["backend"]
    # 環境変数優先 (DATABASE_URL / PGDSN → config の dsn)
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or raw.get("dsn")
    path = os.getenv("SHEETTASKS_CHECKPOINT_PATH") or raw.get("path")
    if backend == "file" and not path:
        raise ConfigError("checkpoint.path is required for the file backend")
    if backend == "postgres" and not dsn:
        raise ConfigError("checkpoint.dsn (or DATABASE_URL / PGDSN) is required for the postgres backend")
    return CheckpointConfig(
        backend=backend,
        path=path,
        dsn=dsn,
        table=raw.get("table", "sheettasks_checkpoint"),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ExportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    src = data["source"]
    google_raw = data.get("google", {})
    sched_raw = data["scheduler"]
    export_raw = data.get("export", {})

    google = GoogleConfig(
        credentials_file=os.getenv("GOOGLE_CREDENTIALS_FILE")
        or google_raw.get("credentials_file", "credentials.json"),
        token_file=os.getenv("GOOGLE_TOKEN_FILE") or google_raw.get("token_file", "token.json"),
    )
    return ExportConfig(
        source=SourceConfig(kind=src["kind"], location=src["location"], sheet=src["sheet"]),
        google=google,
        checkpoint=_checkpoint_config(data["checkpoint"]),
        scheduler=SchedulerConfig(
            trigger_file=sched_raw["trigger_file"],
            poll_seconds=float(sched_raw.get("poll_seconds", 5.0)),
        ),
        export=ExportSettings(**export_raw),
    )
