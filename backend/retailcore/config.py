# backend/retailcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sales tax in basis points (1800 = 18%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "1800"))

    # Time-boxed rules
    VOID_WINDOW_HOURS = int(os.environ.get("VOID_WINDOW_HOURS", "24"))
    RETURN_WINDOW_DAYS = int(os.environ.get("RETURN_WINDOW_DAYS", "30"))

    # Stock alerting policy
    DEFAULT_MIN_STOCK = int(os.environ.get("DEFAULT_MIN_STOCK", "5"))
    ALERT_CRITICAL_BAND = int(os.environ.get("ALERT_CRITICAL_BAND", "2"))

    # Ledger write retries (lock contention / stale version)
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.05"))

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    # Callable returning a UTC-naive datetime; None means wall clock
    CLOCK = None
