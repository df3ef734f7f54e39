"""Forum real-time service configuration.

Loads settings from two YAML files:
  * forum.settings.yaml: non-secret configuration
  * forum.secrets.yaml: secrets (never committed)

Environment overrides:
  * FORUM_SETTINGS_FILE / FORUM_SECRETS_FILE select alternative files
  * FORUM_JWT_SECRET replaces the JWT signing secret
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

SETTINGS_FILE = Path("forum.settings.yaml")
SECRETS_FILE  = Path("forum.secrets.yaml")


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
    secret_key: Optional[str] = None
    algorithm:  str           = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class DatabaseSettings(BaseModel):
    path: str = "forum_chat.duckdb"


class ChatSettings(BaseModel):
    """Chat behaviour knobs."""
    global_room:             str = "global_chat"
    default_page_size:       int = 50
    max_page_size:           int = 100
    conversation_list_limit: int = 50
    banned_message:          str = "Your account has been suspended"

    @field_validator("default_page_size", "max_page_size", "conversation_list_limit")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Optional[Path] = None,
    secrets_file: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = settings_file or Path(os.environ.get("FORUM_SETTINGS_FILE", SETTINGS_FILE))
    secrets_path  = secrets_file or Path(os.environ.get("FORUM_SECRETS_FILE", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    env_secret = os.environ.get("FORUM_JWT_SECRET")
    if env_secret:
        settings_data["secrets"].setdefault("jwt", {})["secret_key"] = env_secret

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, jwt_secret=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        "set" if app_settings.secrets.jwt.secret_key else "missing",
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: AppSettings) -> None:
    """Replace the process-wide settings (used by tests and embedding apps)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads from disk."""
    global _config
    _config = None
