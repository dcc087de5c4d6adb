# backend/motopdv/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/motopdv.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///motopdv.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # When True, checkout uses SystemSettings.max_discount_sem_pin as the
    # discount authorization threshold instead of the fixed 5% rule.
    USE_CONFIGURED_DISCOUNT_LIMIT = os.environ.get("USE_CONFIGURED_DISCOUNT_LIMIT", "0") == "1"

    DEMO_SEED_ENABLED = False
