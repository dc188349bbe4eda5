import os
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

# Load biến môi trường trong .env
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_delays(name: str, default: Tuple[float, ...]) -> Tuple[float, ...]:
    """Parse a comma separated list of seconds, e.g. ``RETRY_DELAYS=2,4,8``."""
    value = os.getenv(name)
    if not value:
        return default
    return tuple(float(part) for part in value.split(",") if part.strip())


class Settings:
    BACKEND_URL: str = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")
    REQUEST_TIMEOUT: float = _env_float("REQUEST_TIMEOUT", 30.0)  # giây

    # 1 lần gọi đầu + 2 lần retry
    MAX_RETRY_COUNT: int = _env_int("MAX_RETRY_COUNT", 3)
    RETRY_DELAYS: Tuple[float, ...] = _env_delays("RETRY_DELAYS", (2.0, 4.0, 8.0))

    HISTORY_KEY: str = os.getenv("HISTORY_KEY", "ai-studio-history")
    MAX_HISTORY_ITEMS: int = _env_int("MAX_HISTORY_ITEMS", 5)
    HISTORY_BACKEND: str = os.getenv("HISTORY_BACKEND", "memory")  # memory | redis

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

    MOCK_MIN_DELAY: float = _env_float("MOCK_MIN_DELAY", 1.0)
    MOCK_MAX_DELAY: float = _env_float("MOCK_MAX_DELAY", 2.0)
    MOCK_FAILURE_RATE: float = _env_float("MOCK_FAILURE_RATE", 0.2)

    MAX_UPLOAD_BYTES: int = _env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)
    MAX_IMAGE_DIMENSION: int = _env_int("MAX_IMAGE_DIMENSION", 1920)

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
