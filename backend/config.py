"""Runtime settings for the orders dashboard, read from the environment."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Largest page the upstream API will serve.
MAX_PER_PAGE = 500

PAGINATION_STRATEGIES = ("best_effort", "fail_fast")


class Settings(BaseModel):
    api_url: str = "https://app.apextrading.com/api/v1"
    api_token: Optional[str] = None
    cache_ttl_seconds: float = Field(300.0, gt=0)
    cache_max_entries: int = Field(256, ge=1)
    per_page: int = Field(MAX_PER_PAGE, ge=1, le=MAX_PER_PAGE)
    detail_batch_size: int = Field(50, ge=1)
    summary_timeout: float = Field(60.0, gt=0)
    detail_timeout: float = Field(120.0, gt=0)
    updated_at_from: str = "1970-04-20T22:04:50Z"
    pagination: str = Field("best_effort", pattern="^(best_effort|fail_fast)$")
    preload_details: int = Field(50, ge=0)
    log_level: str = "INFO"
    log_dir: str = "data/logs"

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("api_token", mode="before")
    @classmethod
    def _blank_token_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def detail_ttl_seconds(self) -> float:
        # Item contents change less often than order status.
        return self.cache_ttl_seconds * 2

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ
        mapping = {
            "api_url": "APEX_API_URL",
            "api_token": "APEX_API_TOKEN",
            "cache_ttl_seconds": "ORDERS_CACHE_TTL_SECONDS",
            "cache_max_entries": "ORDERS_CACHE_MAX_ENTRIES",
            "per_page": "ORDERS_PER_PAGE",
            "detail_batch_size": "ORDERS_DETAIL_BATCH_SIZE",
            "summary_timeout": "ORDERS_SUMMARY_TIMEOUT",
            "detail_timeout": "ORDERS_DETAIL_TIMEOUT",
            "updated_at_from": "ORDERS_UPDATED_FROM",
            "pagination": "ORDERS_PAGINATION",
            "preload_details": "ORDERS_PRELOAD_DETAILS",
            "log_level": "LOG_LEVEL",
            "log_dir": "LOG_DIR",
        }
        values = {field: env[name] for field, name in mapping.items() if env.get(name) is not None}
        return cls(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = ["MAX_PER_PAGE", "PAGINATION_STRATEGIES", "Settings", "get_settings"]
