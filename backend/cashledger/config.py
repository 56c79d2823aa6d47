# backend/cashledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///cashledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Reference allocation: full lock-scan-insert attempts before giving up
    LEDGER_REFERENCE_ATTEMPTS = int(os.environ.get("LEDGER_REFERENCE_ATTEMPTS", "5"))

    # Infrastructure retry (deadlocks, lock timeouts, stale rows)
    LEDGER_LOCK_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_LOCK_RETRY_ATTEMPTS", "3"))
    LEDGER_LOCK_RETRY_BACKOFF = float(os.environ.get("LEDGER_LOCK_RETRY_BACKOFF", "0.1"))

    LEDGER_DEFAULT_PRECISION = int(os.environ.get("LEDGER_DEFAULT_PRECISION", "2"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_JSON = _env_bool("LOG_JSON")
