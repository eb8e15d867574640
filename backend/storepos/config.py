# backend/storepos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storepos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Stock policy: False rejects a sale or adjustment that would take stock below zero.
    ALLOW_NEGATIVE_STOCK = _env_flag("ALLOW_NEGATIVE_STOCK", False)

    # Credit policies
    ENFORCE_CREDIT_LIMIT = _env_flag("ENFORCE_CREDIT_LIMIT", True)
    REJECT_CREDIT_OVERPAYMENT = _env_flag("REJECT_CREDIT_OVERPAYMENT", True)

    # One loyalty point per this many currency units of bill total
    LOYALTY_POINTS_DIVISOR = int(os.environ.get("LOYALTY_POINTS_DIVISOR", "100"))

    BILL_NUMBER_PREFIX = os.environ.get("BILL_NUMBER_PREFIX", "INV")

    # Unit-of-work retry on lock timeouts and optimistic version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "5"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.05"))
