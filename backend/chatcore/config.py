"""Chatcore application configuration.

Loads settings from two YAML files:
  * chatcore.settings.yaml: non-secret configuration
  * chatcore.secrets.yaml: secrets (never committed)

Both paths can be overridden with the CHATCORE_SETTINGS / CHATCORE_SECRETS
environment variables. A missing file is not an error: every section has
defaults that are good enough for local development and tests.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatcore.settings.yaml")
SECRETS_FILE  = Path("chatcore.secrets.yaml")

IN_MEMORY_DB = ":memory:"


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
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class StorageSettings(BaseModel):
    db_path: str = "chatcore.duckdb"


class AuthSettings(BaseModel):
    token_expire_days:   int = 7
    min_password_length: int = 6


class UploadSettings(BaseModel):
    """Limits for the blob-storage collaborator."""
    upload_dir:          str       = "uploads"
    public_prefix:       str       = "/uploads"
    chat_file_max_bytes: int       = 10 * 1024 * 1024
    avatar_max_bytes:    int       = 2 * 1024 * 1024
    image_types:         List[str] = Field(default_factory=lambda: [
        "image/jpeg",
        "image/png",
        "image/gif",
    ])
    chat_file_types:     List[str] = Field(default_factory=lambda: [
        "image/jpeg",
        "image/png",
        "image/gif",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "video/mp4",
        "video/quicktime",
        "audio/mpeg",
        "audio/mp4",
        "audio/aac",
        "audio/wav",
    ])


class MessageSettings(BaseModel):
    page_size:     int = 30
    max_page_size: int = 100


class AdminSettings(BaseModel):
    users_page_size: int = 10
    logs_page_size:  int = 15


class RetentionSettings(BaseModel):
    """Sweep that hard-deletes users soft-deleted longer than retention_days."""
    enabled:                bool = True
    retention_days:         int  = 7
    sweep_interval_seconds: int  = 24 * 60 * 60


class AppConfig(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    storage:   StorageSettings   = Field(default_factory=StorageSettings)
    auth:      AuthSettings      = Field(default_factory=AuthSettings)
    uploads:   UploadSettings    = Field(default_factory=UploadSettings)
    messages:  MessageSettings   = Field(default_factory=MessageSettings)
    admin:     AdminSettings     = Field(default_factory=AdminSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_relative(value: str, base_dir: Path) -> str:
    """Resolve *value* against *base_dir* unless it is absolute or in-memory."""
    if value == IN_MEMORY_DB or Path(value).is_absolute():
        return value
    return str(base_dir / value)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object.

    Relative ``storage.db_path`` and ``uploads.upload_dir`` values are
    resolved against the directory holding the settings file, so the
    service behaves the same regardless of the working directory.
    """
    settings_path = Path(settings_path or os.environ.get("CHATCORE_SETTINGS", SETTINGS_FILE))
    secrets_path  = Path(secrets_path or os.environ.get("CHATCORE_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)

    if settings_path.exists():
        base_dir = settings_path.resolve().parent
        config.storage.db_path = _resolve_relative(config.storage.db_path, base_dir)
        config.uploads.upload_dir = _resolve_relative(config.uploads.upload_dir, base_dir)

    logger.info(
        "Config loaded (server=%s:%s, db=%s, uploads=%s, retention=%s days)",
        config.server.host,
        config.server.port,
        config.storage.db_path,
        config.uploads.upload_dir,
        config.retention.retention_days,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Install *config* as the process-wide configuration."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
