# Overview: Service-layer operations for paired stock units sold as one item.

"""
Paired-Unit Engine

WHY: Some products ship as two physical boxes (indoor/outdoor halves of a
split AC) that are sold together under one combined code. Each half stays a
tracked StockUnit; the pair row bonds them.

DESIGN PRINCIPLES:
- A unit belongs to at most one pair
- Pair status drives component status: reserve/sell/dismantle move the pair
  row and both components in one transaction, or nothing at all
- Transitions are conditional UPDATEs like the single-unit engine; a pair
  that changed state underneath a caller yields None/0 or PairNotSellable
- Sales log one movement per component unit
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import undefer

from ..extensions import db
from ..models import StockUnit, StockUnitPair
from ..models.inventory import (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_RESERVED,
    UNIT_STATUS_SOLD,
    UNIT_STATUSES,
    MOVEMENT_OUT,
)
from ..errors import (
    AlreadyPaired,
    CannotDismantleSold,
    ComponentUnavailable,
    DuplicateCode,
    PairNotFound,
    PairNotSellable,
)
from unitpos.time_utils import utcnow, expires_in
from .capabilities import call_with_expiry_fallback, expiry_supported
from .concurrency import lock_for_update, run_with_retry
from .movement_service import log_movement
from .reservation_service import resolve_ttl_seconds, validate_reservation_key


def normalize_combined_code(code: str | None) -> str:
    return (code or "").strip()


def _find_pair_for_units(unit_ids: list[int]) -> StockUnitPair | None:
    return db.session.query(StockUnitPair).filter(
        StockUnitPair.primary_unit_id.in_(unit_ids) | StockUnitPair.secondary_unit_id.in_(unit_ids)
    ).first()


def _hold_values(model, status: str, reservation_key, expires_at, now) -> dict:
    values = {
        model.status: status,
        model.reservation_key: reservation_key,
        model.updated_at: now,
    }
    if expires_at is not None:
        values[model.reservation_expires_at] = expires_at
    return values


def _free_values(model, with_expiry: bool, now) -> dict:
    values = {
        model.status: UNIT_STATUS_AVAILABLE,
        model.reservation_key: None,
        model.updated_at: now,
    }
    if with_expiry:
        values[model.reservation_expires_at] = None
    return values


# =============================================================================
# CREATE
# =============================================================================

def create_pair(
    primary_unit_id: int,
    secondary_unit_id: int,
    combined_code: str,
    notes: str | None = None,
) -> StockUnitPair:
    """
    Bond two free units under one combined code.

    Raises:
        ValueError: same unit twice or empty code
        AlreadyPaired: either unit is already a component of a pair
        ComponentUnavailable: a unit is missing, not available, or held
        DuplicateCode: combined_code already used
    """
    code = normalize_combined_code(combined_code)
    if not code:
        raise ValueError("combined_code is required")
    if primary_unit_id == secondary_unit_id:
        raise ValueError("A pair needs two different units")

    def _op():
        ids = [primary_unit_id, secondary_unit_id]
        units = {
            unit.id: unit
            for unit in lock_for_update(
                db.session.query(StockUnit).filter(StockUnit.id.in_(ids))
            ).all()
        }
        for unit_id in ids:
            if unit_id not in units:
                raise ComponentUnavailable(f"Unit {unit_id} not found")

        existing = _find_pair_for_units(ids)
        if existing is not None:
            raise AlreadyPaired(
                f"Unit already belongs to pair {existing.combined_code} (id {existing.id})"
            )

        for unit_id in ids:
            unit = units[unit_id]
            if unit.status != UNIT_STATUS_AVAILABLE or unit.reservation_key is not None:
                raise ComponentUnavailable(
                    f"Unit {unit.unit_code} is {unit.status}; only available units can be paired"
                )

        if db.session.query(StockUnitPair.id).filter(StockUnitPair.combined_code == code).first():
            raise DuplicateCode(code)

        pair = StockUnitPair(
            combined_code=code,
            primary_unit_id=primary_unit_id,
            secondary_unit_id=secondary_unit_id,
            status=UNIT_STATUS_AVAILABLE,
            notes=notes,
        )
        db.session.add(pair)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            if db.session.query(StockUnitPair.id).filter(StockUnitPair.combined_code == code).first():
                raise DuplicateCode(code) from exc
            raise AlreadyPaired("Unit was paired concurrently") from exc
        return pair

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_pair(pair_id: int) -> StockUnitPair | None:
    return db.session.get(StockUnitPair, pair_id)


def get_pair_by_code(combined_code: str) -> StockUnitPair | None:
    code = normalize_combined_code(combined_code)
    if not code:
        return None
    query = db.session.query(StockUnitPair).filter(StockUnitPair.combined_code == code)
    if expiry_supported():
        query = query.options(undefer(StockUnitPair.reservation_expires_at))
    return query.first()


def list_pairs(status: str | None = None) -> list[StockUnitPair]:
    if status is not None and status not in UNIT_STATUSES:
        raise ValueError(f"Invalid status: {status}")
    query = db.session.query(StockUnitPair)
    if status is not None:
        query = query.filter(StockUnitPair.status == status)
    return query.order_by(StockUnitPair.created_at.desc(), StockUnitPair.id.desc()).all()


def get_pair_expanded(combined_code: str) -> dict | None:
    """Pair plus both component units, for scanner lookups."""
    pair = get_pair_by_code(combined_code)
    if pair is None:
        return None
    data = pair.to_dict()
    data["primary_unit"] = pair.primary_unit.to_dict() if pair.primary_unit else None
    data["secondary_unit"] = pair.secondary_unit.to_dict() if pair.secondary_unit else None
    return data


# =============================================================================
# RESERVE / RELEASE
# =============================================================================

def reserve_pair(
    pair_id: int,
    reservation_key: str,
    ttl_seconds: int | None = None,
) -> StockUnitPair | None:
    """
    Hold an available pair and both components under reservation_key.

    Returns None when the pair (or either component) is no longer free.
    """
    key = validate_reservation_key(reservation_key)
    ttl = resolve_ttl_seconds(ttl_seconds)

    def _reserve(with_expiry: bool):
        def _op():
            now = utcnow()
            expires_at = expires_in(ttl, now) if with_expiry else None

            pair = db.session.get(StockUnitPair, pair_id)
            if pair is None:
                raise PairNotFound(pair_id)
            components = pair.component_ids

            claimed = db.session.query(StockUnitPair).filter(
                StockUnitPair.id == pair_id,
                StockUnitPair.status == UNIT_STATUS_AVAILABLE,
                StockUnitPair.reservation_key.is_(None),
            ).update(
                _hold_values(StockUnitPair, UNIT_STATUS_RESERVED, key, expires_at, now),
                synchronize_session=False,
            )
            if claimed != 1:
                db.session.rollback()
                return None

            held = db.session.query(StockUnit).filter(
                StockUnit.id.in_(components),
                StockUnit.status == UNIT_STATUS_AVAILABLE,
                StockUnit.reservation_key.is_(None),
            ).update(
                _hold_values(StockUnit, UNIT_STATUS_RESERVED, key, expires_at, now),
                synchronize_session=False,
            )
            if held != 2:
                db.session.rollback()
                current_app.logger.warning(
                    "Pair %s not reserved: only %s of 2 components were free", pair_id, held
                )
                return None

            db.session.commit()
            return db.session.get(StockUnitPair, pair_id)
        return run_with_retry(_op)

    return call_with_expiry_fallback(_reserve)


def release_pair(pair_id: int) -> bool:
    """Release a reserved pair and its components. False if it was not reserved."""

    def _release(with_expiry: bool):
        def _op():
            pair = db.session.get(StockUnitPair, pair_id)
            if pair is None:
                raise PairNotFound(pair_id)
            if pair.status != UNIT_STATUS_RESERVED:
                return False

            now = utcnow()
            key = pair.reservation_key
            key_match = (
                StockUnitPair.reservation_key.is_(None) if key is None
                else StockUnitPair.reservation_key == key
            )
            released = db.session.query(StockUnitPair).filter(
                StockUnitPair.id == pair_id,
                StockUnitPair.status == UNIT_STATUS_RESERVED,
                key_match,
            ).update(_free_values(StockUnitPair, with_expiry, now), synchronize_session=False)
            if not released:
                db.session.rollback()
                return False

            db.session.query(StockUnit).filter(
                StockUnit.id.in_(pair.component_ids),
                StockUnit.status == UNIT_STATUS_RESERVED,
            ).update(_free_values(StockUnit, with_expiry, now), synchronize_session=False)
            db.session.commit()
            return True
        return run_with_retry(_op)

    return call_with_expiry_fallback(_release)


def release_pair_by_reservation_key(reservation_key: str) -> int:
    """Release every pair held under reservation_key. Returns pairs released."""
    key = validate_reservation_key(reservation_key)

    def _release(with_expiry: bool):
        def _op():
            now = utcnow()
            pairs = db.session.query(StockUnitPair).filter(
                StockUnitPair.reservation_key == key,
                StockUnitPair.status == UNIT_STATUS_RESERVED,
            ).all()
            if not pairs:
                return 0

            component_ids = [uid for pair in pairs for uid in pair.component_ids]
            released = db.session.query(StockUnitPair).filter(
                StockUnitPair.id.in_([pair.id for pair in pairs]),
                StockUnitPair.reservation_key == key,
                StockUnitPair.status == UNIT_STATUS_RESERVED,
            ).update(_free_values(StockUnitPair, with_expiry, now), synchronize_session=False)
            db.session.query(StockUnit).filter(
                StockUnit.id.in_(component_ids),
                StockUnit.reservation_key == key,
                StockUnit.status == UNIT_STATUS_RESERVED,
            ).update(_free_values(StockUnit, with_expiry, now), synchronize_session=False)
            db.session.commit()
            return released
        return run_with_retry(_op)

    return call_with_expiry_fallback(_release)


# =============================================================================
# SELL / DISMANTLE
# =============================================================================

def sell_pair(
    pair_id: int,
    order_id: int | None = None,
    customer_id: int | None = None,
    bill_id: int | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
    reservation_key: str | None = None,
) -> StockUnitPair:
    """
    Sell an available pair, or a reserved one when reservation_key matches.

    Raises:
        PairNotFound: no such pair
        PairNotSellable: sold/damaged, held by another key, or a component
            could not be moved to sold
    """

    def _sell(with_expiry: bool):
        def _op():
            pair = db.session.get(StockUnitPair, pair_id)
            if pair is None:
                raise PairNotFound(pair_id)

            if pair.status == UNIT_STATUS_AVAILABLE:
                expected_key = None
            elif pair.status == UNIT_STATUS_RESERVED:
                if reservation_key is not None and pair.reservation_key != reservation_key:
                    raise PairNotSellable(f"Pair {pair.combined_code} is held by another reservation")
                expected_key = pair.reservation_key
            else:
                raise PairNotSellable(f"Pair {pair.combined_code} is {pair.status}")

            expected_status = pair.status
            components = pair.component_ids
            now = utcnow()

            values = {
                "status": UNIT_STATUS_SOLD,
                "reservation_key": None,
                "order_id": order_id,
                "bill_id": bill_id,
                "sold_to_customer_id": customer_id,
                "sold_at": now,
                "updated_at": now,
            }
            if with_expiry:
                values["reservation_expires_at"] = None
            if notes is not None:
                values["notes"] = notes

            def key_match(model):
                if expected_key is None:
                    return model.reservation_key.is_(None)
                return model.reservation_key == expected_key

            sold = db.session.query(StockUnitPair).filter(
                StockUnitPair.id == pair_id,
                StockUnitPair.status == expected_status,
                key_match(StockUnitPair),
            ).update(
                {getattr(StockUnitPair, name): value for name, value in values.items()},
                synchronize_session=False,
            )
            if sold != 1:
                db.session.rollback()
                raise PairNotSellable(f"Pair {pair_id} changed state during sale")

            moved = db.session.query(StockUnit).filter(
                StockUnit.id.in_(components),
                StockUnit.status == expected_status,
                key_match(StockUnit),
            ).update(
                {getattr(StockUnit, name): value for name, value in values.items()},
                synchronize_session=False,
            )
            if moved != 2:
                db.session.rollback()
                raise PairNotSellable(f"Pair {pair_id} components are not both {expected_status}")

            db.session.commit()
            return db.session.get(StockUnitPair, pair_id)
        return run_with_retry(_op)

    pair = call_with_expiry_fallback(_sell)

    for unit in (pair.primary_unit, pair.secondary_unit):
        log_movement(
            variant_id=unit.variant_id,
            location_id=unit.location_id,
            direction=MOVEMENT_OUT,
            quantity=1,
            unit_codes=[unit.unit_code],
            reference_type="pair_sale",
            reference_id=order_id if order_id is not None else pair.combined_code,
            notes=notes,
            actor_id=actor_id,
        )
    return pair


def dismantle_pair(pair_id: int) -> list[int]:
    """
    Delete the pair row and return both components to available.

    Raises:
        PairNotFound: no such pair
        CannotDismantleSold: pair already sold
    """

    def _dismantle(with_expiry: bool):
        def _op():
            pair = db.session.get(StockUnitPair, pair_id)
            if pair is None:
                raise PairNotFound(pair_id)
            if pair.status == UNIT_STATUS_SOLD:
                raise CannotDismantleSold(pair_id)

            components = pair.component_ids
            deleted = db.session.query(StockUnitPair).filter(
                StockUnitPair.id == pair_id,
                StockUnitPair.status != UNIT_STATUS_SOLD,
            ).delete(synchronize_session=False)
            if not deleted:
                db.session.rollback()
                raise CannotDismantleSold(pair_id)

            db.session.query(StockUnit).filter(
                StockUnit.id.in_(components),
                StockUnit.status.in_([UNIT_STATUS_AVAILABLE, UNIT_STATUS_RESERVED]),
            ).update(_free_values(StockUnit, with_expiry, utcnow()), synchronize_session=False)

            db.session.expunge(pair)
            db.session.commit()
            return components
        return run_with_retry(_op)

    return call_with_expiry_fallback(_dismantle)
