import logging
import os
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_database_url() -> str:
    # If it's not found, raise an error to fail fast.
    url: Optional[str] = os.environ.get("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL is not set. Please check your .env file.")
    return url


def sql_echo() -> bool:
    return _env_flag("SQL_ECHO")


def cors_origins() -> List[str]:
    raw = os.environ.get("CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
