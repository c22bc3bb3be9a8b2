# backend/creditdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/creditdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///creditdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Monthly statements are cut at local midnight in this zone
    STATEMENT_TIMEZONE = os.environ.get("STATEMENT_TIMEZONE", "Europe/Vilnius")

    DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "200"))

    # Credit utilization at or above this percent is flagged as a warning
    CREDIT_WARNING_PERCENT = int(os.environ.get("CREDIT_WARNING_PERCENT", "80"))

    # Approved returns are expected back within this many days
    RETURN_EXPECTED_DAYS = int(os.environ.get("RETURN_EXPECTED_DAYS", "7"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
