import os
from decimal import Decimal

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./telehealth.db")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

# Patients may join a virtual consultation this many minutes before it starts.
JOIN_WINDOW_MINUTES = int(os.getenv("JOIN_WINDOW_MINUTES", "15"))

PLATFORM_FEE = Decimal(os.getenv("PLATFORM_FEE", "5.00"))
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "USD")

VIDEO_ROOM_BASE_URL = os.getenv("VIDEO_ROOM_BASE_URL", "https://meet.accesshealth.app/room").rstrip("/")


def validate_runtime_config() -> None:
    if JOIN_WINDOW_MINUTES < 0:
        raise RuntimeError("JOIN_WINDOW_MINUTES must not be negative.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at Postgres in production.")
