from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    metrics_source: str = Field(default="jwt-pizza-service", alias="METRICS_SOURCE")
    metrics_url: str = Field(default="", alias="METRICS_URL")
    metrics_api_key: str = Field(default="", alias="METRICS_API_KEY")
    metrics_push_period_ms: int = Field(default=10_000, gt=0, alias="METRICS_PUSH_PERIOD_MS")
    metrics_push_timeout_s: float = Field(default=5.0, gt=0, alias="METRICS_PUSH_TIMEOUT_S")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    metrics_order_path: str = Field(default="/api/order", alias="METRICS_ORDER_PATH")
    metrics_auth_path: str = Field(default="/api/auth", alias="METRICS_AUTH_PATH")
    # Unset keeps every user ever seen; otherwise idle users drop out at flush time.
    metrics_active_user_ttl_s: float | None = Field(default=None, alias="METRICS_ACTIVE_USER_TTL_S")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def push_period_s(self) -> float:
        return self.metrics_push_period_ms / 1000.0

    @property
    def exporter_enabled(self) -> bool:
        return self.metrics_enabled and bool(self.metrics_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
