# Overview: Environment-driven application configuration.

from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///shopfloor.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # The upstream auth provider forwards the authenticated local user id here
    AUTH_USER_HEADER = os.environ.get("AUTH_USER_HEADER", "X-Authenticated-User-Id")

    # QuickBooks Online OAuth app credentials
    QBO_CLIENT_ID = os.environ.get("QBO_CLIENT_ID", "")
    QBO_CLIENT_SECRET = os.environ.get("QBO_CLIENT_SECRET", "")
    QBO_ENVIRONMENT = os.environ.get("QBO_ENVIRONMENT", "sandbox")
    QBO_REDIRECT_URI = os.environ.get("QBO_REDIRECT_URI", "http://localhost:5000/api/qbo/callback")
    QBO_WEBHOOK_VERIFIER_TOKEN = os.environ.get("QBO_WEBHOOK_VERIFIER_TOKEN", "")

    # Outbound call limits
    QBO_REQUEST_TIMEOUT = _float_env("QBO_REQUEST_TIMEOUT", 30.0)
    QBO_REFRESH_THRESHOLD_SECONDS = _int_env("QBO_REFRESH_THRESHOLD_SECONDS", 60)
    QBO_RETRY_ATTEMPTS = _int_env("QBO_RETRY_ATTEMPTS", 3)
    QBO_RETRY_BACKOFF = _float_env("QBO_RETRY_BACKOFF", 0.5)

    # Standard label batch; smaller batches only produce a warning
    PRINT_BATCH_SIZE = _int_env("PRINT_BATCH_SIZE", 4)

    SYNC_LOG_CAPACITY = _int_env("SYNC_LOG_CAPACITY", 500)
