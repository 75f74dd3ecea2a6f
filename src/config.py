from __future__ import annotations
import os
from datetime import date, datetime
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except ValueError:
        return float(default)


def _get_date(name: str, default: str) -> date:
    raw = os.getenv(name, default).strip()
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(default, "%Y-%m-%d").date()


class Settings:
    """Environment-driven configuration, read when instantiated."""

    def __init__(self):
        self.DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL") or os.getenv("DATABASE_URL_DEV") or None
        self.ESTABLISHMENT_ID: Optional[str] = os.getenv("VISITS_ESTABLISHMENT_ID") or None
        self.VISITS_POLICY: str = os.getenv("VISITS_POLICY", "ONE_PER_DAY").strip().upper()
        self.EVALUATE_TIMEOUT_SECONDS: float = _get_float("VISITS_EVALUATE_TIMEOUT_SECONDS", 5.0)
        self.SEED_ANCHOR_DATE: date = _get_date("VISITS_SEED_ANCHOR_DATE", "2024-01-01")
        self.SEED_INMATES: int = max(1, _get_int("VISITS_SEED_INMATES", 100))
        # 0 or unset = no establishment-wide limit
        self.MAX_CONCURRENT_VISITS: Optional[int] = _get_int("VISITS_MAX_CONCURRENT_VISITS", 0) or None


def get_settings() -> Settings:
    return Settings()
