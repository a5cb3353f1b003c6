from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

# Development fallbacks. Both are logged loudly when used.
DEV_DATABASE_PATH = "./_dev_db"
DEV_SECRET_KEY = "i love solving differential equations"

SESSION_COOKIE_NAME = "session"
SESSION_MAX_AGE_SECONDS = 30 * 24 * 60 * 60

COMPILER_ERROR_MEDIA_TYPE = "application/vnd.asy-compiler-error"

# Request directories live under <root>/user-<identity>/<nonce>/.
INPUT_BASENAME = "input"
USER_DIR_PREFIX = "user-"


def _default_workspaces_root() -> Path:
    return Path(tempfile.gettempdir()) / "asy-eval-server-data"


class Settings(BaseSettings):
    """Process-wide configuration, read once at startup.

    DATABASE_PATH and SECRET_KEY keep their historical unprefixed names;
    everything else lives under ASYEVAL_.
    """

    database_path: str = Field(
        default=DEV_DATABASE_PATH,
        validation_alias=AliasChoices("DATABASE_PATH", "database_path"),
    )
    secret_key: str = Field(
        default=DEV_SECRET_KEY,
        min_length=1,
        validation_alias=AliasChoices("SECRET_KEY", "secret_key"),
    )

    workspaces_root: Path = Field(
        default_factory=_default_workspaces_root,
        validation_alias=AliasChoices("ASYEVAL_WORKSPACES_ROOT", "workspaces_root"),
    )
    step_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("ASYEVAL_STEP_TIMEOUT_SECONDS", "step_timeout_seconds"),
    )
    # Upper bound for an uploaded document source.
    max_input_bytes: int = Field(
        default=1024 * 1024,
        ge=1,
        validation_alias=AliasChoices("ASYEVAL_MAX_INPUT_BYTES", "max_input_bytes"),
    )
    workspace_ttl_seconds: float = Field(
        default=3600.0,
        ge=0,
        validation_alias=AliasChoices("ASYEVAL_WORKSPACE_TTL_SECONDS", "workspace_ttl_seconds"),
    )
    cleanup_interval_seconds: int = Field(
        default=600,
        ge=1,
        validation_alias=AliasChoices("ASYEVAL_CLEANUP_INTERVAL_SECONDS", "cleanup_interval_seconds"),
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        validation_alias=AliasChoices("ASYEVAL_CORS_ORIGINS", "cors_origins"),
    )
    log_level: str = Field(
        default="DEBUG",
        validation_alias=AliasChoices("ASYEVAL_LOG_LEVEL", "log_level"),
    )

    host: str = Field(default="localhost", validation_alias=AliasChoices("HOST", "host"))
    port: int = Field(default=8050, validation_alias=AliasChoices("PORT", "port"))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )

    def warn_on_dev_defaults(self) -> None:
        if self.database_path == DEV_DATABASE_PATH:
            logger.warning("no DATABASE_PATH in env, using the default one: %s", self.database_path)
        if self.secret_key == DEV_SECRET_KEY:
            logger.warning("no SECRET_KEY in env, using the insecure development default")
