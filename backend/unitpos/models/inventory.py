from __future__ import annotations

from sqlalchemy.orm import deferred

from ..extensions import db
from unitpos.time_utils import utcnow, to_utc_z


UNIT_STATUS_AVAILABLE = "available"
UNIT_STATUS_RESERVED = "reserved"
UNIT_STATUS_SOLD = "sold"
UNIT_STATUS_DAMAGED = "damaged"

UNIT_STATUSES = (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_RESERVED,
    UNIT_STATUS_SOLD,
    UNIT_STATUS_DAMAGED,
)

# Statuses that still count as physically on hand
ON_HAND_STATUSES = (UNIT_STATUS_AVAILABLE, UNIT_STATUS_RESERVED)

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"


def _loaded_expiry(instance):
    """
    reservation_expires_at is deferred: older schemas do not carry the column,
    so it is only serialized when a query explicitly loaded it.
    """
    state = db.inspect(instance)
    if "reservation_expires_at" in state.unloaded:
        return None
    return to_utc_z(instance.reservation_expires_at)


class StockUnit(db.Model):
    """
    One physical, individually tracked inventory item.

    STATUS MACHINE:
    - available -> reserved (reservation) -> available (release) | sold (fulfill)
    - available -> damaged
    - sold -> available only through restock reversal

    INVARIANTS:
    - unit_code is unique and normalized to uppercase alphanumerics
    - reservation_key is set iff status == reserved
    - bill_id / order_id are set only while status == sold

    RESERVATION EXPIRY:
    reservation_expires_at was added by a later migration. It is mapped as a
    deferred column so SELECTs on a schema without it keep working; services
    only write it after ReservationExpirySupport confirms the column exists.
    """
    __tablename__ = "stock_units"
    __table_args__ = (
        db.UniqueConstraint("unit_code", name="uq_stock_units_unit_code"),
        db.Index("ix_stock_units_status_variant_location", "status", "variant_id", "location_id"),
        db.Index("ix_stock_units_variant_location_created", "variant_id", "location_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    unit_code = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=UNIT_STATUS_AVAILABLE, index=True)

    # Opaque cart/session token holding the unit
    reservation_key = db.Column(db.String(64), nullable=True, index=True)
    reservation_expires_at = deferred(db.Column(db.DateTime(timezone=True), nullable=True, index=True))

    # Sale metadata
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    sold_to_customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variant = db.relationship("ProductVariant", backref=db.backref("stock_units", lazy=True))
    location = db.relationship("Location", backref=db.backref("stock_units", lazy=True))

    def __repr__(self) -> str:
        return f"<StockUnit id={self.id} code={self.unit_code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "unit_code": self.unit_code,
            "status": self.status,
            "reservation_key": self.reservation_key,
            "reservation_expires_at": _loaded_expiry(self),
            "bill_id": self.bill_id,
            "order_id": self.order_id,
            "sold_to_customer_id": self.sold_to_customer_id,
            "sold_at": to_utc_z(self.sold_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockUnitPair(db.Model):
    """
    Two stock units sold as one item (e.g. indoor + outdoor halves of a split AC).

    The pair status mirrors and drives both component statuses. Each unit can be
    a component of at most one pair (unique on both component columns).
    """
    __tablename__ = "stock_unit_pairs"
    __table_args__ = (
        db.UniqueConstraint("combined_code", name="uq_stock_unit_pairs_combined_code"),
        db.UniqueConstraint("primary_unit_id", name="uq_stock_unit_pairs_primary"),
        db.UniqueConstraint("secondary_unit_id", name="uq_stock_unit_pairs_secondary"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    combined_code = db.Column(db.String(64), nullable=False)
    primary_unit_id = db.Column(db.Integer, db.ForeignKey("stock_units.id"), nullable=False)
    secondary_unit_id = db.Column(db.Integer, db.ForeignKey("stock_units.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=UNIT_STATUS_AVAILABLE, index=True)
    reservation_key = db.Column(db.String(64), nullable=True, index=True)
    reservation_expires_at = deferred(db.Column(db.DateTime(timezone=True), nullable=True))

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    sold_to_customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    primary_unit = db.relationship("StockUnit", foreign_keys=[primary_unit_id])
    secondary_unit = db.relationship("StockUnit", foreign_keys=[secondary_unit_id])

    @property
    def component_ids(self) -> list[int]:
        return [self.primary_unit_id, self.secondary_unit_id]

    def __repr__(self) -> str:
        return f"<StockUnitPair id={self.id} code={self.combined_code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "combined_code": self.combined_code,
            "primary_unit_id": self.primary_unit_id,
            "secondary_unit_id": self.secondary_unit_id,
            "status": self.status,
            "reservation_key": self.reservation_key,
            "reservation_expires_at": _loaded_expiry(self),
            "bill_id": self.bill_id,
            "order_id": self.order_id,
            "sold_to_customer_id": self.sold_to_customer_id,
            "sold_at": to_utc_z(self.sold_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Audit trail of stock changes, one row per (variant, location) batch.

    Written best-effort after the primary operation has committed.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_location", "variant_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    movement_type = db.Column(db.String(8), nullable=False, index=True)  # in, out
    quantity = db.Column(db.Integer, nullable=False)
    unit_codes = db.Column(db.JSON, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "unit_codes": self.unit_codes or [],
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
