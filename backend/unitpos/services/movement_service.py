# Overview: Best-effort stock movement audit trail (in/out quantities per variant and location).

"""
Movement Logger

WHY: Every unit intake, removal, sale and restock leaves an audit row so the
stock history of a (variant, location) can be reconstructed.

CONTRACT:
- Called only after the primary operation has committed
- Never raises: failures are logged at WARNING and rolled back
- One row per (variant, location) group, carrying the affected unit codes
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import StockMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT


VALID_DIRECTIONS = (MOVEMENT_IN, MOVEMENT_OUT)


def log_movement(
    variant_id: int,
    location_id: int,
    direction: str,
    quantity: int,
    unit_codes: list[str] | None = None,
    reference_type: str | None = None,
    reference_id=None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> StockMovement | None:
    """
    Record one movement row. Returns the row, or None if logging failed.
    """
    if quantity <= 0:
        return None

    try:
        if direction not in VALID_DIRECTIONS:
            raise ValueError(f"Invalid movement direction: {direction}")

        movement = StockMovement(
            variant_id=variant_id,
            location_id=location_id,
            movement_type=direction,
            quantity=quantity,
            unit_codes=list(unit_codes or []),
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
            notes=notes,
            created_by=actor_id,
        )
        db.session.add(movement)
        db.session.commit()
        return movement
    except Exception:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to log %s movement for variant=%s location=%s",
            direction, variant_id, location_id,
            exc_info=True,
        )
        return None


def log_grouped_movements(
    rows: Iterable[tuple[int, int, str]],
    direction: str,
    reference_type: str | None = None,
    reference_id=None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> int:
    """
    Group (variant_id, location_id, unit_code) tuples and log one movement per group.

    Rows are plain tuples captured before the primary commit, so no ORM state
    needs to be reloaded here. Returns how many movement rows were written.
    """
    groups: dict[tuple[int, int], list[str]] = defaultdict(list)
    for variant_id, location_id, unit_code in rows:
        groups[(variant_id, location_id)].append(unit_code)

    written = 0
    for (variant_id, location_id), codes in groups.items():
        movement = log_movement(
            variant_id=variant_id,
            location_id=location_id,
            direction=direction,
            quantity=len(codes),
            unit_codes=codes,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            actor_id=actor_id,
        )
        if movement is not None:
            written += 1
    return written


def get_recent_movements(
    limit: int = 50,
    variant_id: int | None = None,
    location_id: int | None = None,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if variant_id is not None:
        query = query.filter(StockMovement.variant_id == variant_id)
    if location_id is not None:
        query = query.filter(StockMovement.location_id == location_id)
    return (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(max(1, min(int(limit), 500)))
        .all()
    )
