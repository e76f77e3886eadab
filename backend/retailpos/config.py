# backend/retailpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Unit-of-work bounds: wait for the write slot, then total execution time
    TX_ACQUIRE_TIMEOUT_SECONDS = float(os.environ.get("TX_ACQUIRE_TIMEOUT_SECONDS", "10"))
    TX_EXECUTION_TIMEOUT_SECONDS = float(os.environ.get("TX_EXECUTION_TIMEOUT_SECONDS", "30"))

    # Lock / optimistic-version conflicts are retried with exponential backoff
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF_SECONDS = float(os.environ.get("TX_RETRY_BACKOFF_SECONDS", "0.1"))

    # Amounts are quantized to cents, so a strict 0.01 tolerance means exact equality
    PAYMENT_TOLERANCE = os.environ.get("PAYMENT_TOLERANCE", "0.01")

    SALE_NUMBER_PAD = int(os.environ.get("SALE_NUMBER_PAD", "6"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
