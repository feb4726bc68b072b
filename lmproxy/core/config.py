"""Application configuration."""
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: two levels up from this file (lmproxy/core/config.py)
PROJECT_ROOT = Path(__file__).parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

LOG_LEVELS = ("error", "warn", "warning", "info", "debug")
ENVIRONMENTS = ("development", "production", "test")


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "Claude Code LM Studio API"
    VERSION: str = "1.0.0"
    HOST: str = "0.0.0.0"
    PORT: int = 1235
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "info"
    LOG_FILE: Optional[str] = None  # Enables rotating file output when set

    # CORS - stored as string in env, converted to list
    CORS_ENABLED: bool = True
    CORS_ORIGINS: str = "*"

    # Backend (Claude Code agent)
    CLAUDE_TIMEOUT: int = 30000  # Per-call deadline in milliseconds
    CLAUDE_MODEL: Optional[str] = None  # Operator override for auto/opus tiers
    CLAUDE_WORKSPACE: Optional[str] = None  # Working directory handed to the backend
    MODEL_MAPPING: Optional[str] = None  # JSON string merged into the static model mapping

    # Sessions
    SESSION_TTL_SECONDS: int = 0  # 0 keeps sessions for the process lifetime

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else ".env",
        case_sensitive=True,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list."""
        origins = [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
        if not origins or "*" in origins:
            return ["*"]
        return origins

    @property
    def workspace_dir(self) -> str:
        """Backend working directory (process cwd unless configured)."""
        return self.CLAUDE_WORKSPACE or os.getcwd()

    @property
    def claude_timeout_seconds(self) -> float:
        return self.CLAUDE_TIMEOUT / 1000.0

    @property
    def log_level_value(self) -> int:
        """Numeric logging level for LOG_LEVEL."""
        level = self.LOG_LEVEL.lower()
        if level == "warn":
            level = "warning"
        return getattr(logging, level.upper())

    @property
    def custom_model_mapping(self) -> Dict[str, Optional[str]]:
        """Parse MODEL_MAPPING into a dict; invalid JSON yields an empty mapping."""
        if not self.MODEL_MAPPING:
            return {}
        try:
            parsed = json.loads(self.MODEL_MAPPING)
        except json.JSONDecodeError as e:
            logging.getLogger(__name__).warning(f"Failed to parse MODEL_MAPPING: {e}. Using defaults.")
            return {}
        if not isinstance(parsed, dict):
            logging.getLogger(__name__).warning("MODEL_MAPPING must be a JSON object. Using defaults.")
            return {}
        return {str(k): (str(v) if v is not None else None) for k, v in parsed.items()}

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        if v.lower() not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}")
        return v.lower()

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate deployment environment."""
        if v.lower() not in ENVIRONMENTS:
            raise ValueError(f"ENVIRONMENT must be one of: {', '.join(ENVIRONMENTS)}")
        return v.lower()

    @field_validator("PORT")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("PORT must be between 1 and 65535")
        return v

    @field_validator("CLAUDE_TIMEOUT")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout in milliseconds."""
        if v < 1:
            raise ValueError("Timeout must be at least 1 ms")
        return v

    @field_validator("CLAUDE_MODEL", "CLAUDE_WORKSPACE", "LOG_FILE")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def warn_negative_session_ttl(self):
        """Negative TTLs disable eviction."""
        if self.SESSION_TTL_SECONDS < 0:
            logging.getLogger(__name__).warning(
                "SESSION_TTL_SECONDS is negative; session eviction disabled"
            )
            self.SESSION_TTL_SECONDS = 0
        return self


settings = Settings()


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
