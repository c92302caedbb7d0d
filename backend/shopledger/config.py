# backend/shopledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///shopledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    SHOP_NAME = os.environ.get("SHOP_NAME", "BeiPoa")
    CURRENCY = os.environ.get("CURRENCY", "KES")

    # Identifier allocation waits at most this long for a sequence lock
    IDENTIFIER_LOCK_TIMEOUT_SECONDS = float(os.environ.get("IDENTIFIER_LOCK_TIMEOUT_SECONDS", "30"))

    # Fixed loyalty award per registered-customer sale
    LOYALTY_POINTS_PER_SALE = int(os.environ.get("LOYALTY_POINTS_PER_SALE", "10"))

    # Anonymous counterparty; never allowed to carry a balance
    WALK_IN_CUSTOMER_ID = os.environ.get("WALK_IN_CUSTOMER_ID", "WALK-IN")

    DEFAULT_PAYMENT_ACCOUNT = os.environ.get("DEFAULT_PAYMENT_ACCOUNT", "Cash")
