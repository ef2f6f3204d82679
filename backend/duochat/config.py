"""duochat application configuration.

Loads settings from two YAML files:
  * duochat.settings.yaml: non-secret configuration
  * duochat.secrets.yaml: secrets (never committed)

The secrets file is looked up next to the settings file. Relative storage
paths are resolved against the directory holding the settings file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("duochat.settings.yaml")
SECRETS_FILE  = Path("duochat.secrets.yaml")

# Overrides the settings file location (used by deployments and tests)
SETTINGS_ENV_VAR = "DUOCHAT_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    reload:          bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class SessionSettings(BaseModel):
    """Limits applied to every live chat connection."""
    send_buffer_size:   int = Field(default=256, ge=1)
    max_event_bytes:    int = Field(default=4096, ge=64)
    max_content_length: int = Field(default=2000, ge=1)


class StorageSettings(BaseModel):
    db_path: str = "duochat.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes: int = Field(default=60, ge=1)


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_storage_path(settings: AppSettings, base_dir: Path) -> None:
    db_path = settings.storage.db_path
    if db_path == ":memory:" or Path(db_path).is_absolute():
        return
    settings.storage.db_path = str(base_dir / db_path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)
    if secrets_path is None:
        secrets_path = settings_path.parent / SECRETS_FILE.name

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    _resolve_storage_path(app_settings, settings_path.parent.resolve())
    logger.info(
        "Settings loaded (server=%s:%s, db=%s, send_buffer=%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.session.send_buffer_size,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppSettings) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Forget cached settings; the next get_config() reloads from disk."""
    global _config
    _config = None
