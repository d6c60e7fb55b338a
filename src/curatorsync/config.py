"""Configuration model and JSON loader."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from curatorsync.contracts.exceptions import ConfigError

DEFAULT_API_BASE = "https://wsmontes.pythonanywhere.com/api"


class CuratorSyncConfig(BaseModel):
    db_path: Path = Path("curatorsync.db")
    api_base: str = DEFAULT_API_BASE
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    startup_delay_seconds: float = Field(default=5.0, ge=0)

    model_config = {"frozen": True}


def load_config(path: str | Path) -> CuratorSyncConfig:
    """Load and validate config from JSON, resolving ``db_path`` against the config directory."""
    config_path = Path(path).expanduser().resolve()

    try:
        raw_payload: Any = json.loads(config_path.read_text(encoding="utf-8"))
        parsed = CuratorSyncConfig.model_validate(raw_payload)
    except OSError as exc:
        raise ConfigError(f"failed reading config file: {config_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in config file: {config_path}") from exc
    except ValidationError as exc:
        raise ConfigError(f"invalid config: {exc}") from exc

    db_path = parsed.db_path.expanduser()
    if str(db_path) != ":memory:" and not db_path.is_absolute():
        db_path = (config_path.parent / db_path).resolve()
    return parsed.model_copy(update={"db_path": db_path})
