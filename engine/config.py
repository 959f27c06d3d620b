"""
engine/config.py

Centralised configuration constants and environment helpers.

Values are read once at import time from the process environment (a local
``.env`` file is loaded first if present).
"""

import logging
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Scheduling ───────────────────────────────────────────────────────
CLOCK_SKEW_TOLERANCE = timedelta(seconds=60)
REMINDER_WINDOW = timedelta(hours=24)
DEFAULT_BOOKING_TIME = "09:00"

# ── Storage ──────────────────────────────────────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path(os.getenv("HEALTHVAULT_DB_PATH", str(_PROJECT_ROOT / "data" / "healthvault.db")))

# ── Logging ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("HEALTHVAULT_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install the root handler used by hosting processes and scripts."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
