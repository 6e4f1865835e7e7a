# backend/cashledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/cashledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///cashledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Listing endpoints: default page sizes, clamped to MAX_PAGE_LIMIT
    MOVEMENTS_PAGE_LIMIT = int(os.environ.get("MOVEMENTS_PAGE_LIMIT", "100"))
    HISTORY_PAGE_LIMIT = int(os.environ.get("HISTORY_PAGE_LIMIT", "50"))
    MAX_PAGE_LIMIT = 500
