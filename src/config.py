"""
SmallTalker — Centralized configuration.

Loads all settings from .env and validates required keys.
Every module that talks to the guide proxy or the record store reads from here.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Guide proxy (edge function in front of the LLM)
    GUIDE_ENDPOINT_URL: str
    GUIDE_API_KEY: str

    # HTTP timeouts
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    STREAM_TIMEOUT_SECONDS: float = 120.0

    # SQLite record store
    DATABASE_PATH: str = "data/smalltalker.db"

    # Dates in prompts are rendered in this zone
    TIMEZONE: str = "Asia/Seoul"

    # Prefetch covers today and the next N days (1 → end of tomorrow)
    PREFETCH_HORIZON_DAYS: int = 1

    # Optional pinned "now" (ISO-8601), empty → wall clock
    SIMULATED_NOW: str = ""

    @field_validator("REQUEST_TIMEOUT_SECONDS", "STREAM_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_timeout(cls, v: str | float) -> float:
        return float(v)

    @field_validator("PREFETCH_HORIZON_DAYS", mode="before")
    @classmethod
    def parse_horizon(cls, v: str | int) -> int:
        days = int(v)
        if days < 0:
            raise ValueError("PREFETCH_HORIZON_DAYS must be >= 0")
        return days


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    endpoint = os.getenv("GUIDE_ENDPOINT_URL", "")
    api_key = os.getenv("GUIDE_API_KEY", "")

    if not endpoint or endpoint.startswith("your-"):
        print("ERROR: GUIDE_ENDPOINT_URL is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not api_key or api_key.startswith("your-"):
        print("ERROR: GUIDE_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        GUIDE_ENDPOINT_URL=endpoint,
        GUIDE_API_KEY=api_key,
        REQUEST_TIMEOUT_SECONDS=os.getenv("REQUEST_TIMEOUT_SECONDS", "30"),
        STREAM_TIMEOUT_SECONDS=os.getenv("STREAM_TIMEOUT_SECONDS", "120"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/smalltalker.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Seoul"),
        PREFETCH_HORIZON_DAYS=os.getenv("PREFETCH_HORIZON_DAYS", "1"),
        SIMULATED_NOW=os.getenv("SIMULATED_NOW", ""),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
