"""Application configuration for the ISBNdb lookup service and its queue."""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ISBNDB_BASE_URL = "https://api2.isbndb.com"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {value!r}")
        return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {value!r}")
        return default


@dataclass(frozen=True)
class IsbndbSettings:
    """Connection settings for the ISBNdb API.

    The service counts as enabled only when the ISBNDB_ENABLED flag is set
    and an API key is present.
    """

    api_key: str = ""
    enabled_flag: bool = True
    base_url: str = ISBNDB_BASE_URL
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return self.enabled_flag and len(self.api_key) > 0

    @classmethod
    def from_env(cls) -> "IsbndbSettings":
        return cls(
            api_key=os.environ.get("ISBNDB_API_KEY", "").strip(),
            enabled_flag=_env_bool("ISBNDB_ENABLED", True),
            base_url=os.environ.get("ISBNDB_BASE_URL", ISBNDB_BASE_URL).rstrip("/"),
            timeout=_env_float("ISBNDB_TIMEOUT", 10.0),
        )


@dataclass(frozen=True)
class QueueSettings:
    """Timing constants for the lookup queue."""

    rate_limit_seconds: float = 1.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "QueueSettings":
        return cls(
            rate_limit_seconds=_env_float("ISBNDB_RATE_LIMIT_SECONDS", 1.0),
            max_retries=max(1, _env_int("ISBNDB_MAX_RETRIES", 3)),
            retry_delay_seconds=_env_float("ISBNDB_RETRY_DELAY_SECONDS", 5.0),
            poll_interval_seconds=_env_float("ISBNDB_POLL_INTERVAL_SECONDS", 1.0),
        )


def is_test_mode() -> bool:
    return os.environ.get("TEST_MODE", "0") == "1"
