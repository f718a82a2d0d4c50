"""
Application configuration.
This module defines the configuration settings for the courier billing application, including database connection,
JWT signing, bill rendering defaults and logging. It uses environment variables for sensitive information and defaults
for development. In production, make sure to set the appropriate environment variables and secure the secret keys.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'courier_billing.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF: enforced only for cookie-authenticated mutating requests (see security.py).
    # Bearer-token API clients are not exposed to cross-site form posts.
    WTF_CSRF_ENABLED = True
    WTF_CSRF_CHECK_DEFAULT = False

    # JWT
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRES_MINUTES = int(os.environ.get("JWT_EXPIRES_MINUTES", str(7 * 24 * 60)))
    JWT_COOKIE_NAME = "token"

    # Bill rendering
    BILL_DEFAULT_BASE_AMOUNT = "800"
    BILL_DEFAULT_FUEL_CHARGES = "80"
    BILL_FUEL_PERCENT_LABEL = "10"
    # False keeps the short 0-999 converter (LARGE NUMBER above that).
    AMOUNT_IN_WORDS_FULL = _env_bool("AMOUNT_IN_WORDS_FULL", False)

    # Error bodies carry exception text always, tracebacks only when enabled.
    DEBUG_ERROR_TRACES = _env_bool("DEBUG_ERROR_TRACES", False)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # App UI name (used in templates)
    APP_NAME = "Courier Billing"


class TestingConfig(Config):
    """In-memory database, no CSRF, short-lived tokens."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    JWT_SECRET_KEY = "test-secret"
    JWT_EXPIRES_MINUTES = 5
    LOG_LEVEL = "WARNING"
