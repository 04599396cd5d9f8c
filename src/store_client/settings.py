"""Environment-driven settings for the store client."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.config import (
    AUTO_DETECT_TIMEOUT_SECONDS,
    DEFAULT_ES_URL,
    DEFAULT_INDEX,
    DEFAULT_KIBANA_SPACE,
    DEFAULT_KIBANA_URL,
    FIELD_CAPS_TIMEOUT_SECONDS,
    LOGS_TIMEOUT_SECONDS,
    METRICS_TIMEOUT_SECONDS,
    PING_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    TICK_INTERVAL_SECONDS,
    TRACES_TIMEOUT_SECONDS,
)
from core.models import StoreConfig


class Settings(BaseSettings):
    """Settings read from ``ELASTICAT_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="ELASTICAT_", case_sensitive=False, extra="ignore")

    # Store connection
    ES_URL: str = DEFAULT_ES_URL
    ES_INDEX: str = DEFAULT_INDEX
    ES_API_KEY: str = ""
    ES_USERNAME: str = ""
    ES_PASSWORD: str = ""
    VERIFY_SSL: bool = True

    # Exploration UI
    KIBANA_URL: str = DEFAULT_KIBANA_URL
    KIBANA_SPACE: str = DEFAULT_KIBANA_SPACE

    # Timeouts (seconds)
    REQUEST_TIMEOUT: float = REQUEST_TIMEOUT_SECONDS
    PING_TIMEOUT: float = PING_TIMEOUT_SECONDS
    TICK_INTERVAL: float = TICK_INTERVAL_SECONDS
    LOGS_TIMEOUT: float = LOGS_TIMEOUT_SECONDS
    METRICS_TIMEOUT: float = METRICS_TIMEOUT_SECONDS
    TRACES_TIMEOUT: float = TRACES_TIMEOUT_SECONDS
    FIELD_CAPS_TIMEOUT: float = FIELD_CAPS_TIMEOUT_SECONDS
    AUTO_DETECT_TIMEOUT: float = AUTO_DETECT_TIMEOUT_SECONDS

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @field_validator(
        "REQUEST_TIMEOUT", "PING_TIMEOUT", "TICK_INTERVAL", "LOGS_TIMEOUT", "METRICS_TIMEOUT",
        "TRACES_TIMEOUT", "FIELD_CAPS_TIMEOUT", "AUTO_DETECT_TIMEOUT",
    )
    @classmethod
    def _positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("duration must be positive")
        return value

    @field_validator("ES_URL")
    @classmethod
    def _non_empty_url(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("ES_URL must not be empty")
        return value.strip()

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def to_store_config(self) -> StoreConfig:
        return StoreConfig(
            url=self.ES_URL,
            index=self.ES_INDEX,
            api_key=self.ES_API_KEY,
            username=self.ES_USERNAME,
            password=self.ES_PASSWORD,
            verify_ssl=self.VERIFY_SSL,
            timeout=self.REQUEST_TIMEOUT,
            ping_timeout=self.PING_TIMEOUT,
        )


settings = Settings()
