"""Runtime settings loaded from the environment (and an optional ``.env``)."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Project root directory (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class SpeedTierThresholds:
    """Rolling-average pace (minutes) cut-offs used to derive a speed tier."""

    fast_max_minutes: float = 235.0
    average_max_minutes: float = 245.0


@dataclass(frozen=True)
class Settings:
    database_url: str
    sql_echo: bool
    log_level: str
    speed_tiers: SpeedTierThresholds


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number") from exc


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()

    thresholds = SpeedTierThresholds(
        fast_max_minutes=_get_float("SPEED_TIER_FAST_MAX_MINUTES", 235.0),
        average_max_minutes=_get_float("SPEED_TIER_AVERAGE_MAX_MINUTES", 245.0),
    )
    if thresholds.fast_max_minutes > thresholds.average_max_minutes:
        raise RuntimeError(
            "SPEED_TIER_FAST_MAX_MINUTES must not exceed SPEED_TIER_AVERAGE_MAX_MINUTES"
        )

    return Settings(
        database_url=os.getenv("DB_URL", "sqlite:///./dev.db"),
        sql_echo=_get_bool("SQL_ECHO"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        speed_tiers=thresholds,
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Install a stdout handler for scripts; library code only emits records."""
    logging.basicConfig(
        level=(level or load_settings().log_level).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
