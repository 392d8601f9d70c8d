# backend/tradebook/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tradebook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Unit of work: deadline applied to every request-scoped transaction
    TX_TIMEOUT_SECONDS = float(os.environ.get("TX_TIMEOUT_SECONDS", "30"))

    # Whole-operation retry on deadlocks / lock timeouts
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF_SECONDS = float(os.environ.get("TX_RETRY_BACKOFF_SECONDS", "0.1"))

    PERMISSION_CACHE_TTL_SECONDS = float(os.environ.get("PERMISSION_CACHE_TTL_SECONDS", "300"))
    NOTIFIER_MAX_WORKERS = int(os.environ.get("NOTIFIER_MAX_WORKERS", "2"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
