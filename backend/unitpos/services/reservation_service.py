# Overview: Service-layer operations for reservation holds on stock units (reserve, release, sweep, fulfill).

"""
Reservation Engine

WHY: A cart holds physical units while the customer checks out. Holds must
never double-book a unit, must release cleanly when the cart is abandoned,
and must turn into sales without a window where another cart can grab them.

DESIGN PRINCIPLES:
- A reservation is not a table: it is the set of units/pairs carrying a key
- Every transition is one conditional bulk UPDATE whose WHERE clause repeats
  the expected current state, so concurrent callers cannot both match a row
- Losing a race is a lower count, never an exception
- Expiry columns are written only when the schema supports them; stale
  sweeping by updated_at works either way

STATUS FLOW:
    available -> reserved (reserve)
    reserved  -> available (release / sweep)
    reserved  -> sold (fulfill)
    sold      -> available (reverse_to_available, restock)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.orm import undefer

from ..extensions import db
from ..models import StockUnit, StockUnitPair
from ..models.inventory import (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_RESERVED,
    UNIT_STATUS_SOLD,
    MOVEMENT_IN,
    MOVEMENT_OUT,
)
from ..errors import StorageError
from unitpos.time_utils import utcnow, expires_in, hours_ago, to_utc_z
from .capabilities import (
    call_with_expiry_fallback,
    expiry_supported,
    get_expiry_support,
    is_unknown_column_error,
)
from .concurrency import run_with_retry
from .movement_service import log_grouped_movements
from .unit_service import (
    free_unit_clause,
    hold_expired_clause,
    hold_live_clause,
    normalize_unit_code,
    unpaired_clause,
)


DEFAULT_RESERVATION_TTL_SECONDS = 900
DEFAULT_STALE_RESERVATION_HOURS = 6

# Keys used internally by sell_available_units; never treated as abandoned carts
DIRECT_SALE_KEY_PREFIX = "direct-"

MAX_KEY_LENGTH = 64


@dataclass
class ReservationResult:
    reservation_key: str
    requested: int
    reserved: int = 0
    unit_ids: list[int] = field(default_factory=list)
    unit_codes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.reserved)

    @property
    def complete(self) -> bool:
        return self.shortfall == 0

    @property
    def message(self) -> str:
        if self.complete:
            return f"{self.reserved} reserved"
        return f"{self.reserved} of {self.requested} reserved, please adjust quantity"

    def to_dict(self) -> dict:
        return {
            "reservation_key": self.reservation_key,
            "requested": self.requested,
            "reserved": self.reserved,
            "shortfall": self.shortfall,
            "unit_ids": self.unit_ids,
            "unit_codes": self.unit_codes,
            "expires_at": to_utc_z(self.expires_at),
            "message": self.message,
        }


@dataclass
class DirectSaleResult:
    requested: int
    units: list[StockUnit] = field(default_factory=list)

    @property
    def sold(self) -> int:
        return len(self.units)

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.sold)

    def to_dict(self) -> dict:
        return {
            "requested": self.requested,
            "sold": self.sold,
            "shortfall": self.shortfall,
            "units": [unit.to_dict() for unit in self.units],
        }


def _config(key: str, default):
    value = current_app.config.get(key)
    return default if value is None else value


def validate_reservation_key(reservation_key: str | None) -> str:
    key = (reservation_key or "").strip()
    if not key:
        raise ValueError("reservation_key is required")
    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(f"reservation_key must be at most {MAX_KEY_LENGTH} characters")
    return key


def resolve_ttl_seconds(ttl_seconds: int | None = None) -> int:
    """Explicit hold length, else RESERVATION_TTL_SECONDS. Must be positive."""
    ttl = ttl_seconds if ttl_seconds is not None else _config(
        "RESERVATION_TTL_SECONDS", DEFAULT_RESERVATION_TTL_SECONDS
    )
    if ttl <= 0:
        raise ValueError("ttl_seconds must be positive")
    return ttl


def _release_values(model, with_expiry: bool, now: datetime) -> dict:
    values = {
        model.status: UNIT_STATUS_AVAILABLE,
        model.reservation_key: None,
        model.updated_at: now,
    }
    if with_expiry:
        values[model.reservation_expires_at] = None
    return values


# =============================================================================
# RESERVE
# =============================================================================

def _select_candidates(
    variant_id: int | None,
    location_id: int | None,
    quantity: int,
    unit_id: int | None = None,
    unit_code: str | None = None,
) -> list[int]:
    """
    Pick the unit ids a reservation will try to claim.

    Specific unit: that one row if it is free. Otherwise the oldest `quantity`
    free units of the (variant, location), FIFO by created_at.
    """
    query = db.session.query(StockUnit.id).filter(free_unit_clause())

    if unit_id is not None or unit_code:
        if unit_id is not None:
            query = query.filter(StockUnit.id == unit_id)
        else:
            query = query.filter(StockUnit.unit_code == normalize_unit_code(unit_code))
        if variant_id is not None:
            query = query.filter(StockUnit.variant_id == variant_id)
        if location_id is not None:
            query = query.filter(StockUnit.location_id == location_id)
        return [row.id for row in query.limit(1).all()]

    query = query.filter(
        StockUnit.variant_id == variant_id,
        StockUnit.location_id == location_id,
    )
    rows = query.order_by(StockUnit.created_at.asc(), StockUnit.id.asc()).limit(quantity).all()
    return [row.id for row in rows]


def _claim(
    unit_ids: list[int],
    reservation_key: str,
    expires_at: datetime | None,
    now: datetime | None = None,
) -> list[tuple[int, str]]:
    """
    Conditionally flip candidate rows to reserved under reservation_key.

    The UPDATE repeats the free-unit predicate, so rows another caller claimed
    since selection are skipped. Returns (id, unit_code) of the rows this
    UPDATE changed, FIFO ordered. Rows already held under the same key by a
    concurrent call are not reported. Does not commit.
    """
    if not unit_ids:
        return []

    stamp = now or utcnow()

    values = {
        StockUnit.status: UNIT_STATUS_RESERVED,
        StockUnit.reservation_key: reservation_key,
        StockUnit.updated_at: stamp,
    }
    if expires_at is not None:
        values[StockUnit.reservation_expires_at] = expires_at

    matched = db.session.query(StockUnit).filter(
        StockUnit.id.in_(unit_ids),
        free_unit_clause(),
    ).update(values, synchronize_session=False)
    if not matched:
        return []

    # Only rows carrying this call's stamp were flipped here
    rows = db.session.query(StockUnit.id, StockUnit.unit_code).filter(
        StockUnit.id.in_(unit_ids),
        StockUnit.status == UNIT_STATUS_RESERVED,
        StockUnit.reservation_key == reservation_key,
        StockUnit.updated_at == stamp,
    ).order_by(StockUnit.created_at.asc(), StockUnit.id.asc()).all()
    return [(row.id, row.unit_code) for row in rows[:matched]]


def reserve(
    variant_id: int | None,
    location_id: int | None,
    quantity: int,
    reservation_key: str,
    ttl_seconds: int | None = None,
    unit_id: int | None = None,
    unit_code: str | None = None,
) -> ReservationResult:
    """
    Hold up to `quantity` units (or one specific unit) under reservation_key.

    Partial success is normal: check result.reserved / result.shortfall.

    Args:
        variant_id, location_id: pool to draw from (required unless a specific unit is given)
        quantity: units wanted (ignored for a specific unit)
        reservation_key: caller's cart/session token
        ttl_seconds: hold length; defaults to RESERVATION_TTL_SECONDS
        unit_id / unit_code: reserve exactly this unit

    Raises:
        ValueError: bad key, quantity or ttl
        StorageError: database failure
    """
    key = validate_reservation_key(reservation_key)
    specific = unit_id is not None or bool(unit_code)
    if specific:
        quantity = 1
    else:
        if variant_id is None or location_id is None:
            raise ValueError("variant_id and location_id are required")
        if not isinstance(quantity, int) or quantity <= 0:
            raise ValueError("quantity must be a positive integer")

    ttl = resolve_ttl_seconds(ttl_seconds)

    def _reserve(with_expiry: bool) -> ReservationResult:
        def _op():
            now = utcnow()
            expires_at = expires_in(ttl, now) if with_expiry else None
            candidates = _select_candidates(variant_id, location_id, quantity, unit_id, unit_code)
            claimed = _claim(candidates, key, expires_at, now)
            db.session.commit()
            return ReservationResult(
                reservation_key=key,
                requested=quantity,
                reserved=len(claimed),
                unit_ids=[uid for uid, _ in claimed],
                unit_codes=[code for _, code in claimed],
                expires_at=expires_at if claimed else None,
            )
        return run_with_retry(_op)

    result = call_with_expiry_fallback(_reserve)
    if not result.complete:
        current_app.logger.info(
            "Reservation %s short: %s of %s reserved", key, result.reserved, result.requested
        )
    return result


# =============================================================================
# RELEASE
# =============================================================================

def release(reservation_key: str) -> int:
    """
    Return every unit and pair held under reservation_key to available.

    Idempotent: unknown or already-released keys affect 0 rows.
    Returns the number of units released.
    """
    key = validate_reservation_key(reservation_key)

    def _release(with_expiry: bool) -> int:
        def _op():
            now = utcnow()
            db.session.query(StockUnitPair).filter(
                StockUnitPair.reservation_key == key,
                StockUnitPair.status == UNIT_STATUS_RESERVED,
            ).update(_release_values(StockUnitPair, with_expiry, now), synchronize_session=False)
            released = db.session.query(StockUnit).filter(
                StockUnit.reservation_key == key,
                StockUnit.status == UNIT_STATUS_RESERVED,
            ).update(_release_values(StockUnit, with_expiry, now), synchronize_session=False)
            db.session.commit()
            return released
        return run_with_retry(_op)

    return call_with_expiry_fallback(_release)


def release_units(unit_ids: list[int]) -> int:
    """
    Release specific reserved units (cart line removal).

    Pair components are skipped; pairs are released as a whole.
    """
    ids = sorted({int(unit_id) for unit_id in unit_ids or []})
    if not ids:
        return 0

    def _release(with_expiry: bool) -> int:
        def _op():
            released = db.session.query(StockUnit).filter(
                StockUnit.id.in_(ids),
                StockUnit.status == UNIT_STATUS_RESERVED,
                unpaired_clause(),
            ).update(_release_values(StockUnit, with_expiry, utcnow()), synchronize_session=False)
            db.session.commit()
            return released
        return run_with_retry(_op)

    return call_with_expiry_fallback(_release)


def _sweep_reserved(pair_criteria: list, unit_criteria: list, with_expiry: bool) -> int:
    """
    Release reserved pairs and standalone units matching the given criteria.

    Pair components follow their pair: they are released only for pairs this
    call actually flipped back to available.
    """
    now = utcnow()

    pair_ids = [
        row.id for row in db.session.query(StockUnitPair.id).filter(
            StockUnitPair.status == UNIT_STATUS_RESERVED,
            *pair_criteria,
        ).all()
    ]
    released = 0
    if pair_ids:
        db.session.query(StockUnitPair).filter(
            StockUnitPair.id.in_(pair_ids),
            StockUnitPair.status == UNIT_STATUS_RESERVED,
            *pair_criteria,
        ).update(_release_values(StockUnitPair, with_expiry, now), synchronize_session=False)

        flipped = db.session.query(
            StockUnitPair.primary_unit_id, StockUnitPair.secondary_unit_id
        ).filter(
            StockUnitPair.id.in_(pair_ids),
            StockUnitPair.status == UNIT_STATUS_AVAILABLE,
            StockUnitPair.updated_at == now,
        ).all()
        component_ids = [uid for row in flipped for uid in (row.primary_unit_id, row.secondary_unit_id)]
        if component_ids:
            released += db.session.query(StockUnit).filter(
                StockUnit.id.in_(component_ids),
                StockUnit.status == UNIT_STATUS_RESERVED,
            ).update(_release_values(StockUnit, with_expiry, now), synchronize_session=False)

    released += db.session.query(StockUnit).filter(
        StockUnit.status == UNIT_STATUS_RESERVED,
        unpaired_clause(),
        *unit_criteria,
    ).update(_release_values(StockUnit, with_expiry, now), synchronize_session=False)

    db.session.commit()
    return released


def sweep_expired(now: datetime | None = None) -> int:
    """
    Release holds whose reservation_expires_at has passed.

    No-op (returns 0) when the schema has no expiry column. Safe to run
    concurrently with itself and with reserve/release.
    """
    support = get_expiry_support()
    if not support.is_supported():
        return 0

    cutoff = now or utcnow()

    def _op():
        return _sweep_reserved(
            [hold_expired_clause(StockUnitPair, cutoff)],
            [hold_expired_clause(StockUnit, cutoff)],
            with_expiry=True,
        )

    try:
        released = run_with_retry(_op)
    except StorageError as exc:
        if is_unknown_column_error(exc.__cause__ or exc):
            support.mark_unsupported()
            return 0
        raise

    if released:
        current_app.logger.info("Expired reservations swept: %s units released", released)
    return released


def sweep_stale(hours: float | None = None) -> int:
    """
    Release holds not touched for `hours`, regardless of expiry support.

    Covers schemas without an expiry column and holders that crashed.
    """
    age = hours if hours is not None else _config(
        "STALE_RESERVATION_HOURS", DEFAULT_STALE_RESERVATION_HOURS
    )
    if age <= 0:
        raise ValueError("hours must be positive")
    cutoff = hours_ago(age)

    def _sweep(with_expiry: bool) -> int:
        return run_with_retry(lambda: _sweep_reserved(
            [StockUnitPair.updated_at < cutoff],
            [StockUnit.updated_at < cutoff],
            with_expiry=with_expiry,
        ))

    released = call_with_expiry_fallback(_sweep)
    if released:
        current_app.logger.info("Stale reservations swept (older than %sh): %s units released", age, released)
    return released


# =============================================================================
# FULFILL & REVERSE
# =============================================================================

def _promote_to_sold(
    key: str,
    order_id: int | None,
    customer_id: int | None,
    bill_id: int | None,
    notes: str | None,
    with_expiry: bool,
) -> list[StockUnit]:
    now = utcnow()

    def live(model) -> list:
        criteria = [model.reservation_key == key, model.status == UNIT_STATUS_RESERVED]
        if with_expiry:
            # Expired-but-unswept holds are not sellable
            criteria.append(hold_live_clause(model, now))
        return criteria

    unit_ids = [
        row.id for row in db.session.query(StockUnit.id).filter(*live(StockUnit)).all()
    ]
    if not unit_ids:
        return []

    def sale_values(model) -> dict:
        values = {
            model.status: UNIT_STATUS_SOLD,
            model.reservation_key: None,
            model.order_id: order_id,
            model.bill_id: bill_id,
            model.sold_to_customer_id: customer_id,
            model.sold_at: now,
            model.updated_at: now,
        }
        if with_expiry:
            values[model.reservation_expires_at] = None
        if notes is not None:
            values[model.notes] = notes
        return values

    db.session.query(StockUnitPair).filter(
        *live(StockUnitPair),
    ).update(sale_values(StockUnitPair), synchronize_session=False)

    db.session.query(StockUnit).filter(
        StockUnit.id.in_(unit_ids),
        *live(StockUnit),
    ).update(sale_values(StockUnit), synchronize_session=False)

    db.session.commit()

    return db.session.query(StockUnit).filter(
        StockUnit.id.in_(unit_ids),
        StockUnit.status == UNIT_STATUS_SOLD,
        StockUnit.sold_at == now,
    ).order_by(StockUnit.id.asc()).all()


def fulfill(
    reservation_key: str,
    order_id: int,
    customer_id: int | None = None,
    bill_id: int | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> list[StockUnit]:
    """
    Promote everything still reserved under reservation_key to sold.

    Only rows still held under exactly this key are sold. If the hold expired
    and was swept, the result is an empty list; callers must re-validate
    before charging.
    """
    key = validate_reservation_key(reservation_key)
    if order_id is None:
        raise ValueError("order_id is required")

    units = call_with_expiry_fallback(lambda with_expiry: run_with_retry(
        lambda: _promote_to_sold(key, order_id, customer_id, bill_id, notes, with_expiry)
    ))

    if units:
        log_grouped_movements(
            [(u.variant_id, u.location_id, u.unit_code) for u in units],
            MOVEMENT_OUT,
            reference_type="sale",
            reference_id=order_id,
            notes=notes,
            actor_id=actor_id,
        )
    return units


def reverse_to_available(order_id: int, actor_id: int | None = None) -> int:
    """
    Restock every unit (and pair) sold under order_id.

    Clears sale metadata and any residual reservation fields so the units are
    immediately reservable. Logs one inbound movement per (variant, location).
    """
    if order_id is None:
        raise ValueError("order_id is required")

    def _reverse(with_expiry: bool):
        def _op():
            now = utcnow()
            captured = {
                row.id: (row.variant_id, row.location_id, row.unit_code)
                for row in db.session.query(
                    StockUnit.id, StockUnit.variant_id, StockUnit.location_id, StockUnit.unit_code
                ).filter(
                    StockUnit.order_id == order_id,
                    StockUnit.status == UNIT_STATUS_SOLD,
                ).all()
            }
            if not captured:
                return 0, []

            def restock_values(model) -> dict:
                values = _release_values(model, with_expiry, now)
                values.update({
                    model.order_id: None,
                    model.bill_id: None,
                    model.sold_to_customer_id: None,
                    model.sold_at: None,
                })
                return values

            db.session.query(StockUnitPair).filter(
                StockUnitPair.order_id == order_id,
                StockUnitPair.status == UNIT_STATUS_SOLD,
            ).update(restock_values(StockUnitPair), synchronize_session=False)

            restocked = db.session.query(StockUnit).filter(
                StockUnit.id.in_(list(captured)),
                StockUnit.order_id == order_id,
                StockUnit.status == UNIT_STATUS_SOLD,
            ).update(restock_values(StockUnit), synchronize_session=False)
            db.session.commit()

            restocked_ids = [
                row.id for row in db.session.query(StockUnit.id).filter(
                    StockUnit.id.in_(list(captured)),
                    StockUnit.status == UNIT_STATUS_AVAILABLE,
                    StockUnit.updated_at == now,
                )
            ]
            return restocked, [captured[uid] for uid in restocked_ids]
        return run_with_retry(_op)

    restocked, rows = call_with_expiry_fallback(_reverse)

    if rows:
        log_grouped_movements(
            rows,
            MOVEMENT_IN,
            reference_type="bill_restock",
            reference_id=order_id,
            notes="Restocked on bill deletion",
            actor_id=actor_id,
        )
    return restocked


def sell_available_units(
    variant_id: int,
    location_id: int,
    quantity: int,
    order_id: int | None = None,
    customer_id: int | None = None,
    bill_id: int | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> DirectSaleResult:
    """
    Sell the oldest free units without a prior cart reservation.

    Claims under a throwaway key with the same conditional update as reserve,
    then promotes that key to sold.
    """
    key = f"{DIRECT_SALE_KEY_PREFIX}{uuid.uuid4().hex}"
    held = reserve(variant_id, location_id, quantity, key)
    if not held.reserved:
        return DirectSaleResult(requested=quantity)

    try:
        units = call_with_expiry_fallback(lambda with_expiry: run_with_retry(
            lambda: _promote_to_sold(key, order_id, customer_id, bill_id, notes, with_expiry)
        ))
    except Exception:
        # release_abandoned skips direct- keys, so the hold is dropped here
        current_app.logger.warning("Direct sale %s failed, releasing its hold", key)
        db.session.rollback()
        release(key)
        raise

    if units:
        log_grouped_movements(
            [(u.variant_id, u.location_id, u.unit_code) for u in units],
            MOVEMENT_OUT,
            reference_type="direct_sale",
            reference_id=order_id,
            notes=notes,
            actor_id=actor_id,
        )
    return DirectSaleResult(requested=quantity, units=units)


# =============================================================================
# INSPECTION & CLEANUP
# =============================================================================

def get_active_reservation_keys() -> list[str]:
    unit_keys = db.session.query(StockUnit.reservation_key).filter(
        StockUnit.status == UNIT_STATUS_RESERVED,
        StockUnit.reservation_key.isnot(None),
    ).distinct()
    pair_keys = db.session.query(StockUnitPair.reservation_key).filter(
        StockUnitPair.status == UNIT_STATUS_RESERVED,
        StockUnitPair.reservation_key.isnot(None),
    ).distinct()
    keys = {row[0] for row in unit_keys} | {row[0] for row in pair_keys}
    return sorted(keys)


def get_reservation_details(reservation_key: str) -> dict:
    """Units and pairs currently held under reservation_key."""
    key = validate_reservation_key(reservation_key)
    with_expiry = expiry_supported()

    unit_query = db.session.query(StockUnit).filter(
        StockUnit.reservation_key == key,
        StockUnit.status == UNIT_STATUS_RESERVED,
    )
    pair_query = db.session.query(StockUnitPair).filter(
        StockUnitPair.reservation_key == key,
        StockUnitPair.status == UNIT_STATUS_RESERVED,
    )
    if with_expiry:
        unit_query = unit_query.options(undefer(StockUnit.reservation_expires_at))
        pair_query = pair_query.options(undefer(StockUnitPair.reservation_expires_at))

    units = unit_query.order_by(StockUnit.created_at.asc(), StockUnit.id.asc()).all()
    pairs = pair_query.order_by(StockUnitPair.id.asc()).all()

    expires_at = None
    if with_expiry:
        stamps = [u.reservation_expires_at for u in units if u.reservation_expires_at is not None]
        expires_at = min(stamps) if stamps else None

    return {
        "reservation_key": key,
        "unit_count": len(units),
        "pair_count": len(pairs),
        "expires_at": to_utc_z(expires_at),
        "units": [u.to_dict() for u in units],
        "pairs": [p.to_dict() for p in pairs],
    }


def release_abandoned(active_keys) -> int:
    """
    Release every reservation whose key is not in active_keys.

    Used by the POS to drop holds of carts that no longer exist. Internal
    direct-sale keys are left alone.
    """
    keep = sorted({k for k in (active_keys or []) if k})

    def key_filter(model) -> list:
        criteria = [
            model.reservation_key.isnot(None),
            ~model.reservation_key.like(f"{DIRECT_SALE_KEY_PREFIX}%"),
        ]
        if keep:
            criteria.append(model.reservation_key.notin_(keep))
        return criteria

    def _release(with_expiry: bool) -> int:
        def _op():
            now = utcnow()
            db.session.query(StockUnitPair).filter(
                StockUnitPair.status == UNIT_STATUS_RESERVED,
                *key_filter(StockUnitPair),
            ).update(_release_values(StockUnitPair, with_expiry, now), synchronize_session=False)
            released = db.session.query(StockUnit).filter(
                StockUnit.status == UNIT_STATUS_RESERVED,
                *key_filter(StockUnit),
            ).update(_release_values(StockUnit, with_expiry, now), synchronize_session=False)
            db.session.commit()
            return released
        return run_with_retry(_op)

    released = call_with_expiry_fallback(_release)
    if released:
        current_app.logger.info("Abandoned reservations released: %s units", released)
    return released


def perform_cleanup(active_keys=None, stale_hours: float | None = None) -> dict:
    """
    Run every cleanup step, collecting failures instead of raising.

    active_keys=None skips the abandoned-cart step.
    """
    report = {"expired": 0, "stale": 0, "abandoned": 0, "errors": []}

    steps = [
        ("expired", sweep_expired),
        ("stale", lambda: sweep_stale(stale_hours)),
    ]
    if active_keys is not None:
        steps.append(("abandoned", lambda: release_abandoned(active_keys)))

    for name, step in steps:
        try:
            report[name] = step()
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Reservation cleanup step %s failed", name)
            report["errors"].append(f"{name}: {exc}")
    return report

