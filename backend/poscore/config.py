# backend/poscore/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/poscore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///poscore.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = (
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    )

    # Order numbers look like POS-20260211-0001
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "POS-")
    ORDER_NUMBER_PAD = 4
    ORDER_NUMBER_MAX_ATTEMPTS = 50

    # Default threshold for lazily created inventory records
    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 10)

    # None disables the refund window
    REFUND_DAYS_LIMIT = _env_int("REFUND_DAYS_LIMIT", None)

    # Held carts older than this lose their soft holds on `flask cart expire-held`
    HELD_ORDER_TTL_HOURS = _env_int("HELD_ORDER_TTL_HOURS", 24)

    RETRY_ATTEMPTS = _env_int("POS_RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_BASE = float(os.environ.get("POS_RETRY_BACKOFF_BASE", "0.1"))
