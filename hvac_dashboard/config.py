"""
Dashboard Configuration

Settings come from environment variables, optionally seeded from a local
`.env` file. Every value has a default so the dashboard runs against the
bundled fixture data with no setup.

Usage:
    from hvac_dashboard.config import load_config

    config = load_config()
    store, report = load_record_store(config.data_source, tz=config.timezone)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd
from dotenv import load_dotenv

from .timewindows import to_local_timestamp

logger = logging.getLogger(__name__)


DEFAULT_DATA_SOURCE = "data"
DEFAULT_PAGE_SIZE = 10
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class DashboardConfig:
    """Effective dashboard settings"""
    data_source: str = DEFAULT_DATA_SOURCE
    page_size: int = DEFAULT_PAGE_SIZE
    as_of: Optional[pd.Timestamp] = None
    timezone: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def data_path(self) -> Path:
        return Path(self.data_source)


def _load_env_file() -> None:
    env_paths = [
        Path.cwd() / ".env",
        Path(__file__).parent.parent / ".env",
    ]
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"Loaded .env from: {env_path}")
            break


def _int_setting(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _timestamp_setting(name: str, tz: Optional[str]) -> Optional[pd.Timestamp]:
    """Naive local timestamp, converted the same way as record timestamps."""
    raw = os.getenv(name, "").strip()
    if raw == "":
        return None
    ts = to_local_timestamp(raw, tz=tz)
    if pd.isna(ts):
        raise ValueError(f"{name} must be an ISO date or datetime, got {raw!r}")
    return ts


def load_config(read_env_file: bool = True) -> DashboardConfig:
    """Build the configuration from the environment (and `.env` when present)."""
    if read_env_file:
        _load_env_file()

    timezone = os.getenv("HVAC_TIMEZONE", "").strip() or None
    config = DashboardConfig(
        data_source=os.getenv("HVAC_DATA_SOURCE", DEFAULT_DATA_SOURCE).strip() or DEFAULT_DATA_SOURCE,
        page_size=_int_setting("HVAC_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        as_of=_timestamp_setting("HVAC_AS_OF", timezone),
        timezone=timezone,
        log_level=os.getenv("HVAC_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL,
    )

    logger.info(f"Data source: {config.data_source}")
    logger.info(f"Page size: {config.page_size}")
    logger.info(f"As-of: {config.as_of if config.as_of is not None else 'now'}")
    logger.info(f"Timezone: {config.timezone or 'host local'}")
    return config
