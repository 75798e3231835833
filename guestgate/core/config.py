from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(ENV_FILE), case_sensitive=False)

    APP_NAME: str = "Guestgate"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 8000

    DATABASE_URL: str = "sqlite:///./guestgate.db"

    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Shared secret for batch QR signatures and single-guest check-in tokens.
    QR_SIGNING_SECRET: str = "change-me-qr"
    QR_TOKEN_EXPIRE_MINUTES: int = 30

    # OVERRIDE_PASSWORD_HASH (bcrypt) wins when both are set.
    OVERRIDE_PASSWORD: str = ""
    OVERRIDE_PASSWORD_HASH: str = ""

    TIMEZONE: str = "America/Los_Angeles"
    GUEST_MONTHLY_LIMIT: int = 3
    HOST_CONCURRENT_LIMIT: int = 3
    DEFAULT_DAILY_CAPACITY: int = 1000
    CHECKIN_CUTOFF_HOUR: int = 23
    CHECKIN_CUTOFF_MINUTE: int = 59
    CONSENT_VALIDITY_DAYS: int = 365
    ROLLING_WINDOW_DAYS: int = 30
    DISCOUNT_MILESTONE: int = 3

    CORS_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"

    SOCKET_PATH: str = "/socket.io"
    DASHBOARD_NAMESPACE: str = "/realtime/dashboard"

    @property
    def cors_origins(self) -> List[str]:
        origins: list[str] = []
        for raw in self.CORS_ORIGINS.split(","):
            value = raw.strip()
            if not value:
                continue
            parsed = urlparse(value)
            if parsed.scheme and parsed.netloc:
                value = f"{parsed.scheme}://{parsed.netloc}"
            origins.append(value.rstrip("/"))
        return origins


@lru_cache
def get_settings() -> Settings:
    return Settings()
