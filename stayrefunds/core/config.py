# stayrefunds/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    database_url: str = Field(
        default="sqlite+pysqlite:///./stayrefunds.db",
        description="SQLAlchemy URL for the relational store",
    )
    database_echo: bool = False

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Broker URL for Celery workers",
    )

    # Payment gateway (Paystack)
    paystack_base_url: str = Field(
        default="https://api.paystack.co",
        description="Base URL for the Paystack REST API",
    )
    paystack_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single settlement call to the gateway",
    )
    paystack_customer_note: str = "Refund for cancelled booking"
    paystack_fallback_secret_key: SecretStr | None = Field(
        default=None,
        description="Optional platform-wide key used when a tenant has none configured",
    )

    # Refund workflow
    default_currency: str = Field(default="ZAR", min_length=3, max_length=3)
    refund_escalation_hours: int = Field(default=24, ge=1)
    refund_list_default_limit: int = Field(default=20, ge=1)
    refund_list_max_limit: int = Field(default=100, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("paystack_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


settings = Settings()
