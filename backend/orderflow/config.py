# backend/orderflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Business policy
    # "payment_confirmed": fulfillment only after the debit invoice is paid
    # "invoice_issued": fulfillment as soon as the order is invoiced
    FULFILLMENT_POLICY = os.environ.get("FULFILLMENT_POLICY", "payment_confirmed")
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))
    INVOICE_TAX_RATE = os.environ.get("INVOICE_TAX_RATE", "0")  # e.g. "0.20" for 20%

    # Identifier generation
    REFERENCE_PREFIXES = {
        "order": "ORD",
        "invoice": "INV",
        "credit_note": "CN",
    }
    REFERENCE_MAX_ATTEMPTS = int(os.environ.get("REFERENCE_MAX_ATTEMPTS", "5"))

    # Audit trail: entity kind -> fields whose updates produce events
    TRACKED_FIELDS = {
        "order": ("status", "total_amount"),
        "order_line": ("unit_price",),
        "invoice": ("status",),
        "fulfillment": ("status", "tracking_number"),
    }

    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
