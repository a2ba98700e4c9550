# marketsync/core/config.py

import os
from functools import lru_cache
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database settings
    DATABASE_URL: str = ""

    # HTTP Basic credentials for the API surface (username is the tenant id)
    BASIC_AUTH_USERNAME: str = ""
    BASIC_AUTH_PASSWORD: str = ""

    # Mercado Livre OAuth application
    ML_CLIENT_ID: str = ""
    ML_CLIENT_SECRET: str = ""
    ML_REDIRECT_URI: str = ""
    ML_SITE_ID: str = "MLB"

    # Mercado Livre API
    ML_API_BASE_URL: str = "https://api.mercadolibre.com"
    ML_AUTH_URL: str = "https://auth.mercadolivre.com.br/authorization"
    ML_REQUEST_TIMEOUT: float = 30.0
    ML_MULTIGET_CHUNK_SIZE: int = 20
    ML_SEARCH_PAGE_SIZE: int = 50
    ML_BATCH_DELAY_SECONDS: float = 0.2
    ML_ORDER_MAX_PAGES: int = 20
    ML_RATE_LIMIT_BACKOFF_SECONDS: float = 2.0
    ML_TOKEN_EXPIRY_MARGIN_SECONDS: int = 300

    # Cache
    CACHE_MAX_SIZE: int = 500

    # Sync engine
    SYNC_BATCH_SIZE: int = 5
    SYNC_CONCURRENCY: int = 5
    SYNC_MAX_ITEMS: int = 50

    # Reconciliation thresholds
    LOW_STOCK_FLOOR: int = 5
    DIVERGENCE_RATIO: float = 0.5
    STALE_SYNC_HOURS: float = 2.0
    CRITICAL_BAND: float = 0.3
    ATTENTION_BAND: float = 0.6

    # Scheduler
    SYNC_SCHEDULE_ENABLED: bool = False
    SYNC_SCHEDULE: str = "*/30 * * * *"

    model_config = ConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache():
    """Clear the settings cache to force reload"""
    get_settings.cache_clear()
