# backend/supplychain/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.environ.get(name)
    if value is None:
        return default
    return tuple(part.strip().upper() for part in value.split(",") if part.strip())


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file for local work; point DATABASE_URL at PostgreSQL in production
    # so SELECT ... FOR UPDATE row locks are honored.
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///supplychain.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Concurrency
    LOCK_TIMEOUT_SECONDS = _env_float("LOCK_TIMEOUT_SECONDS", 5.0)
    RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_BASE = _env_float("RETRY_BACKOFF_BASE", 0.05)

    # Role tiers (lower level = more privilege)
    SUPER_ADMIN_ROLE_LEVEL = _env_int("SUPER_ADMIN_ROLE_LEVEL", 1)
    POWER_USER_ROLE_LEVEL = _env_int("POWER_USER_ROLE_LEVEL", 20)
    SUBMIT_ROLE_THRESHOLD = _env_int("SUBMIT_ROLE_THRESHOLD", 30)
    ACK_ROLE_THRESHOLDS = {
        "PO": 40,
        "INVOICE": 30,
        "PAYMENT": 30,
        "RECEIPT": 40,
    }

    # Workflow policy
    ORDER_CLOSE_POLICY = os.environ.get("ORDER_CLOSE_POLICY", "receipt_created")
    PARENT_ORDER_WINDOW_DAYS = _env_int("PARENT_ORDER_WINDOW_DAYS", 0) or None
    REQUIRE_PARENT_ORDER_TYPES = _env_list("REQUIRE_PARENT_ORDER_TYPES", ())
    FULFILLMENT_ORDER_TYPES = _env_list("FULFILLMENT_ORDER_TYPES", ("H2M", "D2H", "S2D"))

    # Inventory
    LARGE_ADJUSTMENT_THRESHOLD = _env_int("LARGE_ADJUSTMENT_THRESHOLD", 100)

    # Hierarchy
    HIERARCHY_MAX_DEPTH = _env_int("HIERARCHY_MAX_DEPTH", 10)

    # Identity tokens
    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
