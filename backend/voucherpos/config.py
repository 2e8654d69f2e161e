# backend/voucherpos/config.py
from __future__ import annotations
import os

from flask import current_app, has_app_context


def _parse_vendor_urls(raw: str) -> dict:
    vendors = {}
    for item in raw.split(","):
        provider, sep, url = item.partition("=")
        if sep and provider.strip() and url.strip():
            vendors[provider.strip()] = url.strip()
    return vendors


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/voucherpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///voucherpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Settlement engine
    CLAIM_RETRY_ATTEMPTS = int(os.environ.get("CLAIM_RETRY_ATTEMPTS", "3"))
    REF_NUMBER_RETRY_ATTEMPTS = int(os.environ.get("REF_NUMBER_RETRY_ATTEMPTS", "3"))

    # Supplier commission (0-100 scale) for bill payments whose voucher type has none configured
    BILL_PAYMENT_FALLBACK_SUPPLIER_PCT = os.environ.get("BILL_PAYMENT_FALLBACK_SUPPLIER_PCT", "2.50")
    VENDOR_TIMEOUT_SECONDS = float(os.environ.get("VENDOR_TIMEOUT_SECONDS", "30"))

    # HTTP bill payment gateways, "provider=https://host/path,provider2=..."
    BILL_PAYMENT_VENDORS = _parse_vendor_urls(os.environ.get("BILL_PAYMENT_VENDORS", ""))
    BILL_PAYMENT_API_KEY = os.environ.get("BILL_PAYMENT_API_KEY")

    DEFAULT_REDEMPTION_INSTRUCTIONS = "Dial *136*(voucher number)#"


def config_value(key: str, default=None):
    """Read an app config value, falling back to the Config default outside an app context."""
    if has_app_context():
        return current_app.config.get(key, getattr(Config, key, default))
    return getattr(Config, key, default)
