"""
Centralized application settings using Pydantic.

Environment variables (and an optional .env file) are read once per
process through the cached ``get_*_settings`` factories. The pipeline
core never reads settings itself: callers build clients and pass batch
parameters explicitly.
"""

from functools import lru_cache
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings

from receipt_ocr.core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_LLM_ENDPOINT_URL,
    DEFAULT_MAX_ITEMS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_RATE_LIMIT_WINDOW_MS,
    DEFAULT_TEMPERATURE,
    LLM_REQUEST_TIMEOUT_SECONDS,
)
from receipt_ocr.core.exceptions import InvalidConfiguration


class LLMSettings(BaseSettings):
    """Inference service configuration."""

    LLM_ENDPOINT_URL: str = DEFAULT_LLM_ENDPOINT_URL
    LLM_API_KEY: SecretStr = SecretStr("")
    LLM_MODEL: str = DEFAULT_MODEL
    LLM_MAX_TOKENS: int = DEFAULT_MAX_TOKENS
    LLM_TEMPERATURE: float = DEFAULT_TEMPERATURE
    LLM_REQUEST_TIMEOUT_SECONDS: float = LLM_REQUEST_TIMEOUT_SECONDS
    LLM_VERIFY_SSL: bool = True

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class BatchSettings(BaseSettings):
    """Batch scheduling, concurrency and rate-limit configuration."""

    BATCH_SIZE: int = DEFAULT_BATCH_SIZE
    MAX_PARALLELISM: int = DEFAULT_BATCH_SIZE
    RATE_LIMIT_WINDOW_MS: int = DEFAULT_RATE_LIMIT_WINDOW_MS
    MAX_ITEMS: int = DEFAULT_MAX_ITEMS
    ITEM_TIMEOUT_SECONDS: Optional[float] = None
    RETRY_MAX_ATTEMPTS: int = 1

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class AppSettings(BaseSettings):
    """General application settings."""

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    return LLMSettings()


@lru_cache(maxsize=1)
def get_batch_settings() -> BatchSettings:
    return BatchSettings()


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    return AppSettings()


def validate_batch_settings(settings: BatchSettings) -> None:
    """Fail fast on batch parameters that would make a run meaningless.

    Raises:
        InvalidConfiguration: If any parameter is out of range
    """
    if settings.BATCH_SIZE <= 0:
        raise InvalidConfiguration(
            f"BATCH_SIZE must be > 0, got {settings.BATCH_SIZE}", field="BATCH_SIZE"
        )
    if settings.MAX_PARALLELISM < 1:
        raise InvalidConfiguration(
            f"MAX_PARALLELISM must be >= 1, got {settings.MAX_PARALLELISM}",
            field="MAX_PARALLELISM",
        )
    if settings.RATE_LIMIT_WINDOW_MS < 0:
        raise InvalidConfiguration(
            f"RATE_LIMIT_WINDOW_MS must be >= 0, got {settings.RATE_LIMIT_WINDOW_MS}",
            field="RATE_LIMIT_WINDOW_MS",
        )
    if settings.MAX_ITEMS < 0:
        raise InvalidConfiguration(
            f"MAX_ITEMS must be >= 0, got {settings.MAX_ITEMS}", field="MAX_ITEMS"
        )
    if settings.ITEM_TIMEOUT_SECONDS is not None and settings.ITEM_TIMEOUT_SECONDS <= 0:
        raise InvalidConfiguration(
            "ITEM_TIMEOUT_SECONDS must be positive when set",
            field="ITEM_TIMEOUT_SECONDS",
        )
    if settings.RETRY_MAX_ATTEMPTS < 1:
        raise InvalidConfiguration(
            f"RETRY_MAX_ATTEMPTS must be >= 1, got {settings.RETRY_MAX_ATTEMPTS}",
            field="RETRY_MAX_ATTEMPTS",
        )
