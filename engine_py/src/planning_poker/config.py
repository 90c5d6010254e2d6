"""
Server configuration loaded from the environment.
"""

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the planning poker server.

    Every field reads the environment variable of the same name in upper
    case (`PORT`, `DATA_DIR`, ...); `persist` also answers to
    `PERSIST_SESSIONS`. Keyword arguments win over the environment.
    """

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=3001, ge=1, le=65535, description="Port to listen on")
    reload: bool = Field(default=False, description="Enable uvicorn auto-reload")
    log_level: str = Field(default="info", description="Logging level name")
    data_dir: Path = Field(default=Path("data"), description="Directory holding the sessions file")
    persist: bool = Field(
        default=True,
        validation_alias=AliasChoices("persist", "persist_sessions"),
        description="Write sessions to disk"
    )
    stale_connection_seconds: int = Field(
        default=120,
        ge=10,
        description="Connections silent for longer than this are evicted"
    )
    stale_sweep_seconds: int = Field(default=30, ge=1, description="Stale connection sweep interval")
    session_ttl_hours: int = Field(
        default=24,
        ge=1,
        description="Sessions idle for longer than this are deleted"
    )
    expiry_sweep_seconds: int = Field(default=3600, ge=1, description="Expired session sweep interval")
    save_interval_seconds: int = Field(default=300, ge=1, description="Periodic snapshot interval")
    app_version: str = Field(default="1.0.0")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.lower()
        if level not in ("critical", "error", "warning", "info", "debug"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def sessions_file(self) -> Path:
        return self.data_dir / "sessions.json"


def load_settings(**overrides) -> Settings:
    """Create Settings from the environment with optional overrides."""
    return Settings(**overrides)
