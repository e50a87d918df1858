# Overview: Batch on-hand / held / available counts per (variant, location).

"""
Availability Aggregator

WHY: Dashboards and low-stock checks need counts for many (variant, location)
combinations at once. One grouped query answers all of them; callers never
loop a COUNT per combination.

DEFINITIONS:
- on_hand: status in (available, reserved); sold and damaged are gone
- held: reserved and, when expiry is supported, not yet expired
- available: status exactly available

Counts are read fresh every call. Unit availability is never cached.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import StockUnit
from ..models.inventory import ON_HAND_STATUSES, UNIT_STATUS_AVAILABLE, UNIT_STATUS_RESERVED
from unitpos.time_utils import utcnow
from .capabilities import expiry_supported
from .reservation_service import sweep_expired
from .unit_service import hold_live_clause


@dataclass
class AvailabilityMetrics:
    on_hand: int = 0
    held: int = 0
    available: int = 0

    def to_dict(self) -> dict:
        return {"on_hand": self.on_hand, "held": self.held, "available": self.available}


def _normalize_pairs(pairs) -> list[tuple[int, int]]:
    normalized = []
    for pair in pairs or []:
        if isinstance(pair, dict):
            variant_id, location_id = pair.get("variant_id"), pair.get("location_id")
        else:
            variant_id, location_id = pair
        if variant_id is None or location_id is None:
            raise ValueError("Each entry needs variant_id and location_id")
        normalized.append((int(variant_id), int(location_id)))
    return list(dict.fromkeys(normalized))


def _sweep_before_read(sweep: bool | None) -> None:
    if sweep is None:
        sweep = current_app.config.get("SWEEP_EXPIRED_ON_READ", True)
    if not sweep:
        return
    try:
        sweep_expired()
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Expiry sweep before availability read failed", exc_info=True)


def get_availability_metrics(pairs, sweep: bool | None = None) -> dict[tuple[int, int], AvailabilityMetrics]:
    """
    Compute metrics for every requested (variant_id, location_id).

    Every requested key is present in the result; combinations without
    units report zeros. The query filters on variant IN (...) and
    location IN (...) and discards cross-product rows not asked for.

    Args:
        pairs: iterable of (variant_id, location_id) tuples or dicts
        sweep: run a best-effort expiry sweep first (default SWEEP_EXPIRED_ON_READ)
    """
    keys = _normalize_pairs(pairs)
    if not keys:
        return {}

    _sweep_before_read(sweep)

    held_condition = StockUnit.status == UNIT_STATUS_RESERVED
    if expiry_supported():
        now = utcnow()
        held_condition = (StockUnit.status == UNIT_STATUS_RESERVED) & hold_live_clause(StockUnit, now)

    variant_ids = sorted({variant_id for variant_id, _ in keys})
    location_ids = sorted({location_id for _, location_id in keys})

    rows = db.session.query(
        StockUnit.variant_id,
        StockUnit.location_id,
        func.sum(case((StockUnit.status.in_(ON_HAND_STATUSES), 1), else_=0)).label("on_hand"),
        func.sum(case((held_condition, 1), else_=0)).label("held"),
        func.sum(case((StockUnit.status == UNIT_STATUS_AVAILABLE, 1), else_=0)).label("available"),
    ).filter(
        StockUnit.variant_id.in_(variant_ids),
        StockUnit.location_id.in_(location_ids),
    ).group_by(
        StockUnit.variant_id,
        StockUnit.location_id,
    ).all()

    result = {key: AvailabilityMetrics() for key in keys}
    for row in rows:
        key = (row.variant_id, row.location_id)
        if key in result:
            result[key] = AvailabilityMetrics(
                on_hand=int(row.on_hand or 0),
                held=int(row.held or 0),
                available=int(row.available or 0),
            )
    return result


def get_available_unit_counts(pairs, sweep: bool | None = None) -> dict[tuple[int, int], int]:
    """Shortcut: only the available count per key."""
    return {key: metrics.available for key, metrics in get_availability_metrics(pairs, sweep=sweep).items()}
