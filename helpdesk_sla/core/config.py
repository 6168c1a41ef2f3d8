from typing import List, Union
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "Helpdesk SLA Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./helpdesk_sla.db"

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # SLA monitor
    SLA_SCHEDULER_ENABLED: bool = True
    SLA_CHECK_INTERVAL_SECONDS: int = 300  # 5 minutes
    SLA_MONITOR_CONCURRENCY: int = 1  # tickets evaluated in parallel within a cycle
    SLA_STALE_AFTER_INTERVALS: int = 3  # scheduler reported stale after this many missed intervals

    # Built-in fallback targets (hours), also used for disabled priority rules
    SLA_DEFAULT_RESPONSE_HOURS: float = 24.0
    SLA_DEFAULT_RESOLUTION_HOURS: float = 72.0

    @field_validator("SLA_CHECK_INTERVAL_SECONDS", "SLA_MONITOR_CONCURRENCY", "SLA_STALE_AFTER_INTERVALS")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    # Monitoring & Performance Settings
    SLOW_QUERY_THRESHOLD_MS: float = 100.0  # Log queries slower than this (milliseconds)
    SLOW_REQUEST_THRESHOLD_MS: float = 1000.0  # Log requests slower than this (milliseconds)
    ENABLE_STRUCTURED_LOGGING: bool = True  # Use JSON structured logging
    ENABLE_PROMETHEUS_METRICS: bool = True  # Enable Prometheus metrics collection

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
