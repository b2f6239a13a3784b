from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment."""

    openrouter_api_key: str = Field(alias='OPENROUTER_API_KEY')
    openrouter_base_url: str = Field(
        default='https://openrouter.ai/api/v1/chat/completions',
        alias='OPENROUTER_BASE_URL',
    )
    openrouter_app_title: str = Field(default='amicooked', alias='OPENROUTER_APP_TITLE')
    openrouter_referer: str = Field(default='http://localhost:5173', alias='OPENROUTER_REFERER')
    default_model: str = Field(default='openrouter/free', alias='DEFAULT_MODEL')
    ai_timeout_seconds: float = Field(default=45.0, alias='AI_TIMEOUT_SECONDS')
    ai_max_attempts: int = Field(default=3, ge=1, alias='AI_MAX_ATTEMPTS')
    ai_retry_backoff_seconds: float = Field(default=1.0, ge=0, alias='AI_RETRY_BACKOFF_SECONDS')
    analysis_mode: str = Field(default='two_phase', alias='ANALYSIS_MODE')

    github_graphql_url: str = Field(default='https://api.github.com/graphql', alias='GITHUB_GRAPHQL_URL')
    request_timeout: float = Field(default=10.0, alias='REQUEST_TIMEOUT')

    store_db_path: str = Field(default='data/amicooked.db', alias='STORE_DB_PATH')
    store_retry_backoff_seconds: float = Field(default=0.2, ge=0, alias='STORE_RETRY_BACKOFF_SECONDS')
    period_days: int = Field(default=30, ge=1, alias='PERIOD_DAYS')
    plan_catalog_json: str | None = Field(default=None, alias='PLAN_CATALOG_JSON')

    history_window: int = Field(default=10, ge=1, alias='HISTORY_WINDOW')
    memory_item_max_length: int = Field(default=500, ge=1, alias='MEMORY_ITEM_MAX_LENGTH')

    cache_backend: str = Field(default='memory', alias='CACHE_BACKEND')
    redis_url: str | None = Field(default=None, alias='REDIS_URL')
    cache_namespace: str = Field(default='amicooked', alias='CACHE_NAMESPACE')
    github_cache_ttl_seconds: int = Field(default=300, alias='GITHUB_CACHE_TTL_SECONDS')

    cors_allow_origins: List[str] = Field(
        default_factory=lambda: ['http://localhost:5173', 'http://127.0.0.1:5173'],
        alias='CORS_ALLOW_ORIGINS',
    )
    log_level: str = Field(default='INFO', alias='LOG_LEVEL')

    model_config = SettingsConfigDict(
        env_file=('.env',), env_file_encoding='utf-8', extra='ignore', env_parse_delimiter=','
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
