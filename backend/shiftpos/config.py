# backend/shiftpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shiftpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shiftpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Stock rows created by a manual correction start with this reorder threshold
    DEFAULT_STOCK_THRESHOLD = int(os.environ.get("DEFAULT_STOCK_THRESHOLD", "10"))

    # "async" hands events to a thread pool after commit, "sync" delivers inline
    EVENT_DISPATCH_MODE = os.environ.get("EVENT_DISPATCH_MODE", "async")
    EVENT_DISPATCH_WORKERS = int(os.environ.get("EVENT_DISPATCH_WORKERS", "2"))

    # NOT_ABOVE_CATALOG, ADMIN_ONLY or ALLOW (admins are never restricted)
    PRICE_OVERRIDE_POLICY = os.environ.get("PRICE_OVERRIDE_POLICY", "NOT_ABOVE_CATALOG")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "12"))

    # bcrypt cost factor (tests lower it to keep the suite fast)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    )
