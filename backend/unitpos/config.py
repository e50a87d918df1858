# backend/unitpos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool | None) -> bool | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/unitpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///unitpos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Reservation holds
    RESERVATION_TTL_SECONDS = int(os.environ.get("RESERVATION_TTL_SECONDS", "900"))
    STALE_RESERVATION_HOURS = int(os.environ.get("STALE_RESERVATION_HOURS", "6"))

    # None -> probe the schema on first use; True/False pins the answer
    RESERVATION_EXPIRY_SUPPORT = _env_flag("RESERVATION_EXPIRY_SUPPORT", None)

    # Opportunistic expiry sweep before availability reads
    SWEEP_EXPIRED_ON_READ = _env_flag("SWEEP_EXPIRED_ON_READ", True)

    # Payments: 1 cent of slack when checking overpayment
    PAYMENT_OVERPAYMENT_TOLERANCE_CENTS = int(os.environ.get("PAYMENT_OVERPAYMENT_TOLERANCE_CENTS", "1"))

    CATALOG_CACHE_TTL_SECONDS = int(os.environ.get("CATALOG_CACHE_TTL_SECONDS", "60"))
