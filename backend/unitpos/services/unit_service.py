# Overview: Service-layer operations for individual stock units (intake, edits, removal, lookup).

"""
Unit Inventory Store

WHY: Stock is tracked per physical item. Each StockUnit row is one unit with
its own scannable code, so sales, reservations and damage are attributed to
exact items instead of adjusting an aggregate quantity.

DESIGN PRINCIPLES:
- Codes are normalized (alphanumerics only, uppercase) before storage and lookup
- Multi-row transitions are single conditional bulk UPDATE/DELETE statements
- Skipped rows (not available, reserved, paired) are counted out, not errors
- Movement logging runs after commit and never fails the operation
"""

from __future__ import annotations

import re

from sqlalchemy import and_, func, insert, or_, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StockUnit, StockUnitPair, ProductVariant, Location
from ..models.inventory import (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_DAMAGED,
    UNIT_STATUS_SOLD,
    UNIT_STATUSES,
    MOVEMENT_IN,
    MOVEMENT_OUT,
)
from ..errors import UnitNotFound, DuplicateCode, AlreadyPaired
from unitpos.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .movement_service import log_grouped_movements


REMOVE_MODE_DELETE = "delete"
REMOVE_MODE_DAMAGE = "damage"
REMOVE_MODES = (REMOVE_MODE_DELETE, REMOVE_MODE_DAMAGE)

# Statuses a unit may be created in (reserved/sold only arise from workflows)
INTAKE_STATUSES = (UNIT_STATUS_AVAILABLE, UNIT_STATUS_DAMAGED)

UPDATABLE_FIELDS = {"notes", "unit_code", "location_id", "status"}

# Manual status edits allowed through update_unit
MANUAL_TRANSITIONS = {
    (UNIT_STATUS_AVAILABLE, UNIT_STATUS_DAMAGED),
    (UNIT_STATUS_DAMAGED, UNIT_STATUS_AVAILABLE),
}

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def normalize_unit_code(code: str | None) -> str:
    """'ac-1001 / b' -> 'AC1001B'"""
    if code is None:
        return ""
    return _NON_ALNUM.sub("", str(code)).upper()


# =============================================================================
# SHARED PREDICATES
# =============================================================================

def unpaired_clause():
    """SQL predicate: unit is not a component of any pair."""
    return and_(
        ~StockUnit.id.in_(select(StockUnitPair.primary_unit_id)),
        ~StockUnit.id.in_(select(StockUnitPair.secondary_unit_id)),
    )


def free_unit_clause():
    """SQL predicate: unit can be claimed right now (available, unheld, unpaired)."""
    return and_(
        StockUnit.status == UNIT_STATUS_AVAILABLE,
        StockUnit.reservation_key.is_(None),
        unpaired_clause(),
    )


def hold_live_clause(model, now):
    """SQL predicate: an expiring hold is still live strictly before its expiry instant."""
    return or_(model.reservation_expires_at.is_(None), model.reservation_expires_at > now)


def hold_expired_clause(model, now):
    return and_(model.reservation_expires_at.isnot(None), model.reservation_expires_at <= now)


def is_unit_paired(unit_id: int) -> bool:
    return db.session.query(StockUnitPair.id).filter(
        (StockUnitPair.primary_unit_id == unit_id) | (StockUnitPair.secondary_unit_id == unit_id)
    ).first() is not None


def _code_exists(code: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(StockUnit.id).filter(StockUnit.unit_code == code)
    if exclude_id is not None:
        query = query.filter(StockUnit.id != exclude_id)
    return query.first() is not None


# =============================================================================
# INTAKE & EDITS
# =============================================================================

def create_unit(
    variant_id: int,
    location_id: int,
    unit_code: str,
    status: str = UNIT_STATUS_AVAILABLE,
    notes: str | None = None,
    actor_id: int | None = None,
) -> StockUnit:
    """
    Register one physical unit at a location.

    Raises:
        ValueError: empty code, bad status, unknown variant/location
        DuplicateCode: normalized code already exists
    """
    code = normalize_unit_code(unit_code)
    if not code:
        raise ValueError("unit_code must contain at least one letter or digit")
    if status not in INTAKE_STATUSES:
        raise ValueError(f"Invalid intake status: {status}. Must be one of {list(INTAKE_STATUSES)}")
    if db.session.get(ProductVariant, variant_id) is None:
        raise ValueError(f"Variant {variant_id} not found")
    if db.session.get(Location, location_id) is None:
        raise ValueError(f"Location {location_id} not found")

    def _op():
        if _code_exists(code):
            raise DuplicateCode(code)

        # Core insert names only these columns, so schemas without
        # reservation_expires_at accept it too
        try:
            result = db.session.execute(
                insert(StockUnit.__table__).values(
                    variant_id=variant_id,
                    location_id=location_id,
                    unit_code=code,
                    status=status,
                    notes=notes,
                )
            )
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateCode(code) from exc
        return db.session.get(StockUnit, result.inserted_primary_key[0])

    unit = run_with_retry(_op)

    log_grouped_movements(
        [(unit.variant_id, unit.location_id, unit.unit_code)],
        MOVEMENT_IN,
        reference_type="intake",
        reference_id=unit.id,
        notes=notes,
        actor_id=actor_id,
    )
    return unit


def get_unit(unit_id: int) -> StockUnit | None:
    return db.session.get(StockUnit, unit_id)


def count_units(variant_id: int, location_id: int, status: str | None = None) -> int:
    query = db.session.query(func.count(StockUnit.id)).filter(
        StockUnit.variant_id == variant_id,
        StockUnit.location_id == location_id,
    )
    if status is not None:
        query = query.filter(StockUnit.status == status)
    return query.scalar() or 0


def list_units(
    variant_id: int | None = None,
    location_id: int | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> list[StockUnit]:
    """Units newest first, optionally filtered."""
    if status is not None and status not in UNIT_STATUSES:
        raise ValueError(f"Invalid status: {status}")

    query = db.session.query(StockUnit)
    if variant_id is not None:
        query = query.filter(StockUnit.variant_id == variant_id)
    if location_id is not None:
        query = query.filter(StockUnit.location_id == location_id)
    if status is not None:
        query = query.filter(StockUnit.status == status)
    query = query.order_by(StockUnit.created_at.desc(), StockUnit.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def update_unit(unit_id: int, fields: dict) -> StockUnit:
    """
    Apply an allowed partial update.

    Only notes, unit_code, location_id and the manual available <-> damaged
    status edit are accepted. Reservation and sale transitions go through the
    reservation and pair services.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {sorted(unknown)}")

    def _op():
        unit = lock_for_update(db.session.query(StockUnit).filter_by(id=unit_id)).first()
        if not unit:
            raise UnitNotFound(unit_id)

        new_code = None
        if "unit_code" in fields:
            new_code = normalize_unit_code(fields["unit_code"])
            if not new_code:
                raise ValueError("unit_code must contain at least one letter or digit")
            if new_code != unit.unit_code and _code_exists(new_code, exclude_id=unit.id):
                raise DuplicateCode(new_code)

        if "status" in fields and fields["status"] != unit.status:
            transition = (unit.status, fields["status"])
            if transition not in MANUAL_TRANSITIONS:
                raise ValueError(f"Cannot change status from {unit.status} to {fields['status']}")
            if unit.reservation_key is not None:
                raise ValueError("Cannot change status of a reserved unit")
            if is_unit_paired(unit.id):
                raise AlreadyPaired(f"Unit {unit.id} belongs to a pair; dismantle the pair first")
            unit.status = fields["status"]

        if "location_id" in fields and fields["location_id"] != unit.location_id:
            if unit.status != UNIT_STATUS_AVAILABLE:
                raise ValueError("Only available units can change location")
            if db.session.get(Location, fields["location_id"]) is None:
                raise ValueError(f"Location {fields['location_id']} not found")
            unit.location_id = fields["location_id"]

        if new_code is not None:
            unit.unit_code = new_code
        if "notes" in fields:
            unit.notes = fields["notes"]

        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateCode(new_code or unit.unit_code) from exc
        return unit

    return run_with_retry(_op)


# =============================================================================
# REMOVAL
# =============================================================================

def remove_units(
    unit_ids: list[int],
    mode: str = REMOVE_MODE_DELETE,
    reason: str | None = None,
    actor_id: int | None = None,
) -> int:
    """
    Hard-delete or damage-mark units that are currently free.

    Reserved, sold, damaged and paired units are skipped silently; the
    returned count is what was actually removed.
    """
    if mode not in REMOVE_MODES:
        raise ValueError(f"Invalid mode: {mode}. Must be one of {list(REMOVE_MODES)}")
    ids = sorted({int(unit_id) for unit_id in unit_ids or []})
    if not ids:
        return 0

    def _op():
        captured = {
            row.id: (row.variant_id, row.location_id, row.unit_code)
            for row in db.session.query(
                StockUnit.id, StockUnit.variant_id, StockUnit.location_id, StockUnit.unit_code
            ).filter(StockUnit.id.in_(ids), free_unit_clause()).all()
        }
        if not captured:
            return 0, []

        stamp = utcnow()
        scope = db.session.query(StockUnit).filter(
            StockUnit.id.in_(list(captured)),
            free_unit_clause(),
        )
        if mode == REMOVE_MODE_DELETE:
            affected = scope.delete(synchronize_session=False)
            db.session.commit()
            survivors = {
                row.id for row in db.session.query(StockUnit.id).filter(StockUnit.id.in_(list(captured)))
            }
            removed_ids = [uid for uid in captured if uid not in survivors]
        else:
            values = {
                StockUnit.status: UNIT_STATUS_DAMAGED,
                StockUnit.updated_at: stamp,
            }
            if reason:
                values[StockUnit.notes] = reason
            affected = scope.update(values, synchronize_session=False)
            db.session.commit()
            removed_ids = [
                row.id for row in db.session.query(StockUnit.id).filter(
                    StockUnit.id.in_(list(captured)),
                    StockUnit.status == UNIT_STATUS_DAMAGED,
                    StockUnit.updated_at == stamp,
                )
            ]
        return affected, [captured[uid] for uid in removed_ids]

    affected, rows = run_with_retry(_op)

    if rows:
        log_grouped_movements(
            rows,
            MOVEMENT_OUT,
            reference_type="damage" if mode == REMOVE_MODE_DAMAGE else "manual_removal",
            notes=reason,
            actor_id=actor_id,
        )
    return affected


# =============================================================================
# LOOKUP & SALE METADATA
# =============================================================================

def resolve_by_code(code: str | None) -> StockUnit | None:
    """Scanner lookup. Unknown codes return None."""
    normalized = normalize_unit_code(code)
    if not normalized:
        return None
    return db.session.query(StockUnit).filter(StockUnit.unit_code == normalized).first()


def link_units_to_bill(
    unit_ids: list[int],
    bill_id: int,
    order_id: int | None = None,
    notes: str | None = None,
) -> int:
    """Attach bill (and order) references to already-sold units."""
    ids = sorted({int(unit_id) for unit_id in unit_ids or []})
    if not ids:
        return 0

    values = {StockUnit.bill_id: bill_id, StockUnit.updated_at: utcnow()}
    if order_id is not None:
        values[StockUnit.order_id] = order_id
    if notes is not None:
        values[StockUnit.notes] = notes

    def _op():
        affected = db.session.query(StockUnit).filter(
            StockUnit.id.in_(ids),
            StockUnit.status == UNIT_STATUS_SOLD,
        ).update(values, synchronize_session=False)
        db.session.commit()
        return affected

    return run_with_retry(_op)
