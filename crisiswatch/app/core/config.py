"""
Settings, read once from environment variables and an optional ``.env``.

Precedence: env var > .env file > default.  List values (``AI_MODELS``,
``CORS_ORIGINS``) are given as JSON arrays in the environment.

Usage:
    from crisiswatch.app.core.config import settings
    print(settings.AI_MODELS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "CrisisWatch"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True  # exception text in 500 responses
    LOG_LEVEL: str = "INFO"

    # ── HTTP ──
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    CORS_ALLOW_ALL: bool = True

    # ── Cache ──
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    REDIS_CACHE_TTL: int = Field(default=300, gt=0)
    ASSESSMENT_CACHE_TTL: int = Field(default=300, gt=0)   # fused assessments
    ANALYSIS_CACHE_TTL: int = Field(default=3600, gt=0)    # AI analyses are expensive

    # ── Upstream sources ──
    # Each URL receives ?region=<name> and returns that domain's payload.
    CONFLICT_SOURCE_URL: Optional[str] = None
    ECONOMIC_SOURCE_URL: Optional[str] = None
    CLIMATE_SOURCE_URL: Optional[str] = None
    NEWS_SOURCE_URL: Optional[str] = None
    SOURCE_FETCH_TIMEOUT: float = Field(default=30.0, gt=0)

    # ── Generative AI (OpenAI-compatible chat completions) ──
    AI_BASE_URL: str = "https://router.huggingface.co/v1"
    AI_API_KEY: Optional[str] = None
    AI_MODELS: List[str] = [  # priority order: primary first
        "deepseek-ai/DeepSeek-R1",
        "Qwen/Qwen2.5-7B-Instruct",
        "meta-llama/Llama-3.3-70B-Instruct",
    ]
    AI_MAX_TOKENS: int = Field(default=2048, gt=0)
    AI_TEMPERATURE: float = Field(default=0.3, ge=0.0, le=2.0)
    AI_CALL_TIMEOUT: float = Field(default=60.0, gt=0)
    AI_MAX_RETRIES: int = Field(default=2, ge=0)  # extra attempts per model
    AI_RETRY_BACKOFF_BASE: float = Field(default=2.0, ge=0)  # wait = base × retry number

    @field_validator("AI_MODELS")
    @classmethod
    def _strip_models(cls, models: List[str]) -> List[str]:
        return [m.strip() for m in models if m and m.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def source_urls(self) -> Dict[str, Optional[str]]:
        """Upstream URL per domain name; None where unconfigured."""
        return {
            "conflict": self.CONFLICT_SOURCE_URL,
            "economic": self.ECONOMIC_SOURCE_URL,
            "climate": self.CLIMATE_SOURCE_URL,
            "news": self.NEWS_SOURCE_URL,
        }


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
