# backend/retailcore/config.py
from __future__ import annotations
import os


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for a single storage call waiting on a lock (seconds)
    STORAGE_TIMEOUT_SECONDS = float(os.environ.get("STORAGE_TIMEOUT_SECONDS", "5"))

    # Per-owner lock contention retry
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "3"))
    LOCK_RETRY_BACKOFF_SECONDS = float(os.environ.get("LOCK_RETRY_BACKOFF_SECONDS", "0.1"))

    # Settlement policy
    INVESTOR_POOL_BRANCH_CODE = os.environ.get("INVESTOR_POOL_BRANCH_CODE", "POOL")
    INVESTOR_POOL_RATE = os.environ.get("INVESTOR_POOL_RATE", "0.70")
    PROFIT_ENTRY_TYPES = _csv(
        os.environ.get("PROFIT_ENTRY_TYPES", "Sale,Expense,Adjustment,Transfer")
    )


def engine_options(config) -> dict:
    """SQLAlchemy engine options that bound how long a storage call may block."""
    uri = config.get("SQLALCHEMY_DATABASE_URI", "")
    timeout = config.get("STORAGE_TIMEOUT_SECONDS", Config.STORAGE_TIMEOUT_SECONDS)
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    if uri.startswith("postgresql"):
        return {"connect_args": {"options": f"-c lock_timeout={int(timeout * 1000)}"}}
    return {}
