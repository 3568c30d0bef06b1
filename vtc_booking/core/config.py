from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    REDIS_URL: Optional[str] = None

    RATE_LIMIT: int = 12
    RATE_LIMIT_WINDOW: int = 60  # seconds
    RATE_LIMIT_RETRY_AFTER: int = 30

    AI_ASSISTANT_ENABLED: bool = True

    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-5-nano"
    OPENAI_FALLBACK_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MAX_COMPLETION_TOKENS: Optional[int] = None
    OPENAI_TIMEOUT: float = 20.0

    ROUTING_API_KEY: str = ""
    ROUTING_BASE_URL: str = "https://maps.googleapis.com/maps/api/distancematrix/json"
    ROUTING_TIMEOUT: float = 15.0
    ROUTE_WAIT_SECONDS: float = 9.0

    SERPER_API_KEY: str = ""
    SERPER_URL: str = "https://google.serper.dev/search"
    SEARCH_TIMEOUT: float = 8.0

    TENANT_CONFIG_FILE: Optional[str] = None

    TIMEZONE: str = "Europe/Paris"
    DEFAULT_CURRENCY: str = "EUR"

    API_TITLE: str = "VTC Booking Assistant"
    API_DESCRIPTION: str = "Tariff engine and conversational booking assistant for chauffeur trips"
    API_VERSION: str = "1.0.0"

    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
