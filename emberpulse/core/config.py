from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="EMBERPULSE_",
        case_sensitive=False,
    )

    env: str = Field(default="development")
    debug: bool = Field(default=False)
    docs_enabled: bool = Field(default=True)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_json: bool = Field(default=False)

    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])

    opentsdb_host: str = Field(default="localhost", min_length=1, max_length=255)
    opentsdb_port: int = Field(default=4242, ge=1, le=65535)
    opentsdb_scheme: Literal["http", "https"] = Field(default="http")
    opentsdb_timeout_seconds: float = Field(default=10.0, ge=0.5, le=120.0)
    opentsdb_connect_timeout_seconds: float = Field(default=5.0, ge=0.1, le=60.0)
    opentsdb_back_scan_hours: int = Field(default=96, ge=0, le=24 * 365)
    opentsdb_write_high_water_bytes: int = Field(default=64 * 1024, ge=0)
    opentsdb_connect_on_startup: bool = Field(default=True)

    reconnect_max_attempts: int = Field(default=5, ge=1, le=100)
    reconnect_base_delay_seconds: float = Field(default=0.5, ge=0.0, le=60.0)
    reconnect_max_delay_seconds: float = Field(default=30.0, ge=0.0, le=600.0)
    breaker_failure_threshold: int = Field(default=2, ge=1, le=100)
    breaker_cooldown_seconds: float = Field(default=30.0, ge=0.0, le=3600.0)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def opentsdb_base_url(self) -> str:
        return f"{self.opentsdb_scheme}://{self.opentsdb_host}:{self.opentsdb_port}"


def load_settings() -> Settings:
    settings = Settings()
    if not settings.cors_origins:
        settings.cors_origins = ["http://localhost:3000", "http://localhost:8000"]
    return settings
