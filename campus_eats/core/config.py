from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Service ---
    PROJECT_NAME: str = "Campus_Eats"
    DATABASE_URL: str = "sqlite:///./campus_eats.db"
    REDIS_URL: str | None = None  # None -> in-process change feed
    LOG_LEVEL: str = "INFO"

    # --- Pricing (snapshotted onto each order at checkout) ---
    TAX_RATE: float = 0.08
    DELIVERY_FEE: float = 2.99
    MIN_ORDER_SUBTOTAL: float = 5.00
    MAX_ORDER_ITEMS: int = 20
    ESTIMATED_DELIVERY_MINUTES: int = 30

    # --- Tracking ---
    RUNNER_SPEED_KMH: float = 20.0

    # --- Resilience ---
    RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 300
    RETRY_MAX_DELAY_MS: int = 4000

    # Degraded-mode polling when the change feed is unavailable
    POLL_INTERVAL_SECONDS: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @field_validator("POLL_INTERVAL_SECONDS")
    @classmethod
    def _bound_poll_interval(cls, value: float) -> float:
        return min(max(value, 1.0), 60.0)

    @field_validator("RUNNER_SPEED_KMH")
    @classmethod
    def _positive_speed(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("RUNNER_SPEED_KMH must be greater than zero")
        return value

    @field_validator("REDIS_URL")
    @classmethod
    def _blank_redis_is_none(cls, value: str | None) -> str | None:
        return value or None

settings = Settings()
