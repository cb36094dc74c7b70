from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

VERSION = "2.0.0"


class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    API_KEY: str = ""

    # Admission gate capacity; must not exceed what the browser can hold open at once
    MAX_WORKERS: int = 4
    ENGINE_MAX_SESSIONS: int = 16

    MAX_BODY_SIZE: int = 500 * 1024 * 1024  # 500MB
    RATE_LIMIT: int = 0  # requests per minute per client, 0 = disabled
    CORS_ORIGINS: str = ""  # comma separated

    # Conversion deadlines (seconds)
    INLINE_TIMEOUT_SECONDS: float = 120.0
    URL_TIMEOUT_SECONDS: float = 60.0
    ADMISSION_TIMEOUT_SECONDS: float = 30.0
    ASYNC_TIMEOUT_SECONDS: float = 300.0

    # Readiness
    SETTLE_DELAY_SECONDS: float = 3.0
    IMAGE_SETTLE_DELAY_SECONDS: float = 0.5
    URL_SETTLE_DELAY_SECONDS: float = 0.0
    READINESS_MODE: str = "settle"  # settle | network_idle

    BROWSER_HEADLESS: bool = True

    # Collaborators
    WEBHOOK_TIMEOUT_SECONDS: float = 30.0
    WEBHOOK_RETRIES: int = 3
    STORAGE_TIMEOUT_SECONDS: float = 300.0
    LOCAL_STORAGE_ROOT: str = "data/storage"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"

    @field_validator("READINESS_MODE")
    @classmethod
    def check_readiness_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in ("settle", "network_idle"):
            raise ValueError("READINESS_MODE must be 'settle' or 'network_idle'")
        return value

    @model_validator(mode="after")
    def check_worker_capacity(self):
        if self.MAX_WORKERS < 1:
            raise ValueError("MAX_WORKERS must be at least 1")
        if self.MAX_WORKERS > self.ENGINE_MAX_SESSIONS:
            raise ValueError(
                f"MAX_WORKERS ({self.MAX_WORKERS}) exceeds ENGINE_MAX_SESSIONS "
                f"({self.ENGINE_MAX_SESSIONS})"
            )
        return self

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
