"""
Configuration settings for tradeloop
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Temporal
    TEMPORAL_ADDRESS: str = "localhost:7233"
    TEMPORAL_NAMESPACE: str = "default"
    ORDERS_TASK_QUEUE: str = "orders-tq"

    # Upstream geocoder (Nominatim compatible)
    GEOCODER_BASE_URL: str = "https://nominatim.openstreetmap.org"
    GEOCODER_USER_AGENT: str = "tradeloop/0.1.0"
    GEOCODER_TIMEOUT: float = 10.0
    GEOCODER_COUNTRY_CODES: str = "in"
    GEOCODER_MAX_RETRIES: int = 2
    DEFAULT_COUNTRY: str = "India"

    # Address form debounce (seconds)
    CITY_DEBOUNCE_SECONDS: float = 1.0
    STATE_DEBOUNCE_SECONDS: float = 0.5

    # Device location
    DEVICE_LOCATION_TIMEOUT: float = 10.0
    DEVICE_LOCATION_MAX_AGE: float = 300.0

    # Orders
    EXCHANGE_CODE_LENGTH: int = 6

    # Service
    SERVICE_NAME: str = "tradeloop"
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 8000
    LOG_LEVEL: str = "INFO"


# Create global settings instance
settings = Settings()
