# backend/orderledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Allocator-assigned order numbers are retried this many times on collision
    ORDER_NUMBER_RETRY_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_RETRY_ATTEMPTS", "3"))

    # Oversell is permitted unless explicitly disabled
    STOCK_ALLOW_NEGATIVE = _env_flag("STOCK_ALLOW_NEGATIVE", True)
