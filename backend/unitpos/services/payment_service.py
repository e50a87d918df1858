# Overview: Service-layer operations for bill payment entries; keeps remaining/status derived from the ledger.

"""
Bill Payment Ledger

WHY: Customers settle bills in several instalments (cash today, UPI next
week). Each instalment is a PaymentEntry; the bill's remaining amount and
payment status are derived from the full set of entries.

DESIGN PRINCIPLES:
- Derived fields are recomputed from SUM(entries), never incremented
- Overpayment is rejected before insertion; the bill is left untouched
- Walk-in bills (no customer) accept entries with a NULL customer
- Bill rows are version-checked; concurrent writers retry via run_with_retry

INVARIANT (after every mutation):
    sum(entries.amount_cents) + remaining_cents == total_cents
    remaining_cents >= 0
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Bill, PaymentEntry
from ..models.sales import (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
)
from ..errors import BillNotFound, PaymentEntryNotFound, AlreadyPaid, OverpaymentRejected
from unitpos.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_UPI = "upi"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CHEQUE = "cheque"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_UPI,
    METHOD_BANK_TRANSFER,
    METHOD_CHEQUE,
    METHOD_OTHER,
]

DEFAULT_OVERPAYMENT_TOLERANCE_CENTS = 1

UPDATABLE_ENTRY_FIELDS = {
    "amount_cents",
    "payment_method",
    "payment_date",
    "reference_number",
    "utr_number",
    "notes",
}


def _tolerance_cents() -> int:
    value = current_app.config.get("PAYMENT_OVERPAYMENT_TOLERANCE_CENTS")
    return DEFAULT_OVERPAYMENT_TOLERANCE_CENTS if value is None else int(value)


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValueError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValueError("Payment amount must be positive")
    return amount_cents


def _validate_method(payment_method: str) -> str:
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValueError(f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}")
    return payment_method


def derive_payment_status(total_cents: int, paid_cents: int) -> str:
    """
    PAYMENT STATUS:
    - paid: nothing remains (total - paid <= 0)
    - partial: something paid, something remains
    - pending: nothing paid
    """
    if total_cents - paid_cents <= 0:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


def _sum_entries(bill_id: int, exclude_entry_id: int | None = None) -> int:
    query = db.session.query(
        db.func.coalesce(db.func.sum(PaymentEntry.amount_cents), 0)
    ).filter(PaymentEntry.bill_id == bill_id)
    if exclude_entry_id is not None:
        query = query.filter(PaymentEntry.id != exclude_entry_id)
    return int(query.scalar() or 0)


def _lock_bill(bill_id: int) -> Bill:
    bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
    if not bill:
        raise BillNotFound(bill_id)
    return bill


def _recompute_locked(bill: Bill) -> Bill:
    """Recompute derived fields on a bill already loaded in this transaction."""
    db.session.flush()
    paid = _sum_entries(bill.id)
    remaining = bill.total_cents - paid
    bill.payment_status = derive_payment_status(bill.total_cents, paid)
    bill.remaining_cents = max(0, remaining)
    return bill


# =============================================================================
# PAYMENT ENTRY CREATION
# =============================================================================

def create_payment_entry(
    bill_id: int,
    amount_cents: int,
    payment_method: str = METHOD_CASH,
    customer_id: int | None = None,
    payment_date: datetime | None = None,
    reference_number: str | None = None,
    utr_number: str | None = None,
    notes: str | None = None,
    created_by: int | None = None,
) -> PaymentEntry:
    """
    Record a payment against a bill.

    Args:
        bill_id: Bill being paid
        amount_cents: Positive amount in cents
        payment_method: cash, card, upi, bank_transfer, cheque, other
        customer_id: Payer; defaults to the bill's customer (NULL for walk-ins)
        payment_date: When the money was received (default now)
        reference_number / utr_number: Card slip, cheque or bank reference

    Raises:
        ValueError: invalid amount or method
        BillNotFound: no such bill
        AlreadyPaid: nothing remains on the bill
        OverpaymentRejected: amount exceeds remaining plus tolerance
    """
    _validate_amount(amount_cents)
    _validate_method(payment_method)
    tolerance = _tolerance_cents()

    def _op():
        bill = _lock_bill(bill_id)

        remaining = bill.total_cents - _sum_entries(bill.id)
        if remaining <= 0:
            raise AlreadyPaid(bill_id)
        if amount_cents > remaining + tolerance:
            raise OverpaymentRejected(amount_cents, remaining)

        entry = PaymentEntry(
            bill_id=bill.id,
            customer_id=customer_id if customer_id is not None else bill.customer_id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_date=payment_date or utcnow(),
            reference_number=reference_number,
            utr_number=utr_number,
            notes=notes,
            created_by=created_by,
        )
        db.session.add(entry)

        _recompute_locked(bill)
        db.session.commit()
        return entry

    entry = run_with_retry(_op)
    current_app.logger.info(
        "Payment entry %s recorded on bill %s: %s cents (%s)",
        entry.id, bill_id, amount_cents, payment_method,
    )
    return entry


# =============================================================================
# PAYMENT ENTRY EDITS
# =============================================================================

def update_payment_entry(entry_id: int, fields: dict) -> PaymentEntry:
    """
    Edit an entry and recompute its bill.

    A changed amount is re-checked against the bill total minus every other
    entry, with the same tolerance as creation.
    """
    unknown = set(fields) - UPDATABLE_ENTRY_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {sorted(unknown)}")
    if "amount_cents" in fields:
        _validate_amount(fields["amount_cents"])
    if "payment_method" in fields:
        _validate_method(fields["payment_method"])
    tolerance = _tolerance_cents()

    def _op():
        entry = lock_for_update(db.session.query(PaymentEntry).filter_by(id=entry_id)).first()
        if not entry:
            raise PaymentEntryNotFound(entry_id)
        bill = _lock_bill(entry.bill_id)

        if "amount_cents" in fields and fields["amount_cents"] != entry.amount_cents:
            remaining_without = bill.total_cents - _sum_entries(bill.id, exclude_entry_id=entry.id)
            if fields["amount_cents"] > remaining_without + tolerance:
                raise OverpaymentRejected(fields["amount_cents"], max(0, remaining_without))

        for name, value in fields.items():
            if name == "payment_date" and value is None:
                continue
            setattr(entry, name, value)

        _recompute_locked(bill)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def delete_payment_entry(entry_id: int) -> Bill:
    """Remove an entry and return the recomputed bill."""

    def _op():
        entry = lock_for_update(db.session.query(PaymentEntry).filter_by(id=entry_id)).first()
        if not entry:
            raise PaymentEntryNotFound(entry_id)
        bill = _lock_bill(entry.bill_id)

        db.session.delete(entry)
        _recompute_locked(bill)
        db.session.commit()
        return bill

    return run_with_retry(_op)


def recompute_bill_status(bill_id: int) -> Bill:
    """
    Recompute remaining_cents and payment_status from all entries.

    remaining = total - sum(entries), clamped to >= 0.
    """
    def _op():
        bill = _lock_bill(bill_id)
        _recompute_locked(bill)
        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_payment_entries(
    bill_id: int | None = None,
    customer_id: int | None = None,
    limit: int = 100,
) -> list[PaymentEntry]:
    query = db.session.query(PaymentEntry)
    if bill_id is not None:
        query = query.filter(PaymentEntry.bill_id == bill_id)
    if customer_id is not None:
        query = query.filter(PaymentEntry.customer_id == customer_id)
    return query.order_by(PaymentEntry.payment_date.asc(), PaymentEntry.id.asc()).limit(limit).all()


def get_bill_payment_summary(bill_id: int) -> dict:
    """
    Payment summary for a bill.

    Returns:
    - total_cents / paid_cents / remaining_cents
    - payment_status
    - entries (oldest first)
    """
    bill = db.session.get(Bill, bill_id)
    if not bill:
        raise BillNotFound(bill_id)

    entries = list_payment_entries(bill_id=bill_id, limit=1000)
    paid = sum(entry.amount_cents for entry in entries)

    return {
        "bill_id": bill.id,
        "invoice_number": bill.invoice_number,
        "customer_id": bill.customer_id,
        "total_cents": bill.total_cents,
        "paid_cents": paid,
        "remaining_cents": bill.remaining_cents,
        "payment_status": bill.payment_status,
        "entry_count": len(entries),
        "entries": [entry.to_dict() for entry in entries],
    }
