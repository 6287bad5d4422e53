import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Force-load .env (Windows-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./shopbot.db"

REQUIRED_VARS = (
    "BOT_TOKEN",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "SERVER_URL",
    "DATABASE_URL",
)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {value!r}")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    stripe_secret_key: str | None
    stripe_webhook_secret: str | None
    server_url: str
    bot_token: str | None
    jwt_secret: str | None
    stripe_timeout: float = 10.0
    notification_timeout: float = 10.0
    # Answer 503 on transient webhook failures so Stripe redelivers
    webhook_retry_transient: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            server_url=(os.getenv("SERVER_URL") or "http://localhost:3000").rstrip("/"),
            bot_token=os.getenv("BOT_TOKEN"),
            jwt_secret=os.getenv("JWT_SECRET"),
            stripe_timeout=_env_float("STRIPE_TIMEOUT", 10.0),
            notification_timeout=_env_float("NOTIFICATION_TIMEOUT", 10.0),
            webhook_retry_transient=_env_bool("WEBHOOK_RETRY_TRANSIENT"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @staticmethod
    def missing() -> list[str]:
        """Names of required environment variables that are not set."""
        return [name for name in REQUIRED_VARS if not os.getenv(name)]

    def require_webhook_secret(self) -> str:
        if not self.stripe_webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not set. Check your .env file.")
        return self.stripe_webhook_secret


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
