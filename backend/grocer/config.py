# backend/grocer/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/grocer.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///grocer.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Weighed goods: max decimals accepted for kg quantities
    KG_DECIMALS = int(os.environ.get("KG_DECIMALS", "3"))

    # Discount rounding: NEAREST_1, NEAREST_0_50, NEAREST_0_10, NEAREST_0_01
    ROUNDING_MODE = os.environ.get("ROUNDING_MODE", "NEAREST_1")

    # Tax in basis points applied per line on (gross - discount). 0 = prices are tax-inclusive.
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "0"))

    # Receipt numbering: INV-000001
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "INV")
    RECEIPT_PAD = int(os.environ.get("RECEIPT_PAD", "6"))

    DEFAULT_TERMINAL = os.environ.get("DEFAULT_TERMINAL", "T1")

    # Allowed difference between tender sum and invoice net
    PAYMENT_TOLERANCE_CENTS = int(os.environ.get("PAYMENT_TOLERANCE_CENTS", "1"))

    # bcrypt cost for PIN hashes (tests lower this)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
