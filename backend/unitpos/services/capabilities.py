# Overview: Runtime detection of optional schema features (reservation expiry column).

"""
Reservation Expiry Capability Probe

WHY: reservation_expires_at arrived in a later migration. Deployments that
have not applied it must keep reserving, releasing and selling units; they
simply lose automatic expiry.

DESIGN:
- Probe once per process with a dedicated connection (never the request
  session, so a failed probe cannot poison an open transaction)
- Any probe error counts as "unsupported"
- Unknown-column errors seen later in normal operation downgrade the answer
- Config RESERVATION_EXPIRY_SUPPORT=True/False pins the answer and skips probing
"""

from __future__ import annotations

import threading

from flask import current_app
from sqlalchemy import text

from ..extensions import db
from ..errors import StorageError


EXTENSION_KEY = "unitpos.reservation_expiry"

PROBE_SQL = "SELECT reservation_expires_at FROM stock_units LIMIT 1"

_UNKNOWN_COLUMN_MARKERS = (
    "no such column",        # SQLite
    "has no column named",   # SQLite INSERT
    "undefinedcolumn",       # psycopg
    "unknown column",        # MySQL
    "does not exist",        # PostgreSQL message text
)


def is_unknown_column_error(exc: BaseException) -> bool:
    """
    True if exc (or the DBAPI error it wraps) reports a missing column.

    Checks SQLSTATE 42703 first, then falls back to message matching.
    """
    candidates = [exc, getattr(exc, "orig", None)]
    for candidate in candidates:
        if candidate is None:
            continue
        for attr in ("pgcode", "sqlstate"):
            if getattr(candidate, attr, None) == "42703":
                return True
        name = candidate.__class__.__name__.lower()
        if name == "undefinedcolumn":
            return True

    message = str(exc).lower()
    if "column" not in message and "undefinedcolumn" not in message:
        return False
    return any(marker in message for marker in _UNKNOWN_COLUMN_MARKERS)


class ReservationExpirySupport:
    """
    Memoized answer to "does stock_units carry reservation_expires_at?".

    One instance lives in app.extensions; it is safe to share across threads.
    """

    def __init__(self, forced: bool | None = None):
        self._lock = threading.Lock()
        self._forced = forced
        self._supported: bool | None = forced

    @property
    def probed(self) -> bool:
        return self._supported is not None

    def is_supported(self, engine=None) -> bool:
        if self._supported is not None:
            return self._supported

        with self._lock:
            if self._supported is None:
                self._supported = self._probe(engine or db.engine)
        return self._supported

    def _probe(self, engine) -> bool:
        try:
            with engine.connect() as conn:
                conn.execute(text(PROBE_SQL)).fetchall()
        except Exception as exc:
            if is_unknown_column_error(exc):
                current_app.logger.warning(
                    "stock_units.reservation_expires_at missing; reservation expiry disabled"
                )
            else:
                current_app.logger.warning(
                    "Reservation expiry probe failed; treating expiry as unsupported",
                    exc_info=True,
                )
            return False
        current_app.logger.info("Reservation expiry supported")
        return True

    def mark_unsupported(self) -> None:
        """Downgrade after an unknown-column error in normal operation."""
        with self._lock:
            if self._supported is not False:
                current_app.logger.warning("Reservation expiry marked unsupported at runtime")
            self._supported = False

    def reset(self) -> None:
        with self._lock:
            self._supported = self._forced


def get_expiry_support() -> ReservationExpirySupport:
    return current_app.extensions[EXTENSION_KEY]


def expiry_supported() -> bool:
    return get_expiry_support().is_supported()


def call_with_expiry_fallback(operation):
    """
    Run operation(with_expiry) and retry once without expiry if the column
    turns out to be missing mid-flight.

    operation must be safe to re-run: it is expected to wrap its own writes in
    run_with_retry, which rolls back before raising StorageError.
    """
    support = get_expiry_support()
    with_expiry = support.is_supported()
    try:
        return operation(with_expiry)
    except StorageError as exc:
        if not with_expiry or not is_unknown_column_error(exc.__cause__ or exc):
            raise
        support.mark_unsupported()
        return operation(False)
