# backend/creditdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///creditdesk.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Version-conflict retries for ledger writes (attempts, seconds)
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "5"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.05"))

    # Regenerations allowed when a new authorization code collides
    CODE_GENERATION_ATTEMPTS = int(os.environ.get("CODE_GENERATION_ATTEMPTS", "10"))

    # Header populated by the upstream identity provider
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-User-Id")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LEDGER_RETRY_BACKOFF = 0.0
