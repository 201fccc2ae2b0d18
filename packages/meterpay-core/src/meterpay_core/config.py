"""Canonical configuration surface for Meterpay services."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class ArkConfig(BaseSettings):
    """Settlement network (Ark Service Provider) configuration."""
    asp_url: str = "https://asp.testnet.arkade.example"
    receiver_pubkey: str = "ark1q..."


class MeterpaySettings(BaseSettings):
    """Main Meterpay configuration."""

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"
    payments_mode: Literal["free", "testnet", "mainnet"] = "free"

    # HTTP
    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Storage: "memory://" or a PostgreSQL DSN
    database_url: str = Field(default="", validate_default=True)

    # Settlement network
    ark: ArkConfig = Field(default_factory=ArkConfig)

    # Pipeline timings (seconds)
    quote_ttl_seconds: int = Field(default=30, ge=1)
    idempotency_ttl_seconds: int = Field(default=120, ge=1)
    job_timeout_seconds: float = Field(default=30.0, gt=0)
    idempotency_lock_ttl_seconds: int = Field(default=60, ge=1)

    # Background expiry sweep
    enable_sweeper: bool = True
    sweep_interval_seconds: int = Field(default=60, ge=1)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    class Config:
        env_prefix = "METERPAY_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        """Parse comma-separated origins from env var."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("database_url", mode="before")
    @classmethod
    def set_database_default(cls, v: str) -> str:
        """Fall back to DATABASE_URL, then to the in-memory store."""
        if not v:
            v = os.getenv("DATABASE_URL", "") or "memory://"
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator("idempotency_lock_ttl_seconds")
    @classmethod
    def lock_outlives_job(cls, v: int, info: ValidationInfo) -> int:
        """A reservation must not lapse while its job can still be running."""
        job_timeout = info.data.get("job_timeout_seconds")
        if job_timeout is not None and v <= job_timeout:
            raise ValueError(
                f"idempotency_lock_ttl_seconds ({v}) must exceed job_timeout_seconds ({job_timeout:g})"
            )
        return v

    @property
    def use_postgres(self) -> bool:
        return self.database_url.startswith("postgresql://")


@lru_cache
def load_settings(env_file: str | None = None) -> MeterpaySettings:
    """Load MeterpaySettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return MeterpaySettings(_env_file=env_path)
