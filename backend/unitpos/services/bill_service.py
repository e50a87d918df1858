# Overview: Service-layer operations for orders and bills (creation, lookup, deletion with optional restock).

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Bill, Order, PaymentEntry, StockUnit, StockUnitPair
from ..models.sales import PAYMENT_STATUS_PENDING
from ..errors import BillNotFound
from unitpos.time_utils import utcnow
from .concurrency import run_with_retry
from .reservation_service import reverse_to_available


def create_order(customer_id: int | None = None, total_cents: int = 0) -> Order:
    if total_cents < 0:
        raise ValueError("total_cents cannot be negative")

    def _op():
        order = Order(customer_id=customer_id, total_cents=total_cents)
        db.session.add(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


def create_bill(
    total_cents: int,
    customer_id: int | None = None,
    order_id: int | None = None,
    invoice_number: str | None = None,
    created_by: int | None = None,
) -> Bill:
    """New bill with nothing paid: remaining = total, status pending."""
    if isinstance(total_cents, bool) or not isinstance(total_cents, int):
        raise ValueError("total_cents must be an integer")
    if total_cents < 0:
        raise ValueError("total_cents cannot be negative")

    def _op():
        bill = Bill(
            total_cents=total_cents,
            remaining_cents=total_cents,
            payment_status=PAYMENT_STATUS_PENDING,
            customer_id=customer_id,
            order_id=order_id,
            invoice_number=invoice_number,
            created_by=created_by,
        )
        db.session.add(bill)
        db.session.commit()
        return bill

    return run_with_retry(_op)


def get_bill(bill_id: int) -> Bill | None:
    return db.session.get(Bill, bill_id)


def delete_bill(bill_id: int, restock: bool = False, actor_id: int | None = None) -> dict:
    """
    Delete a bill with its payment entries and order.

    restock=True first reverses every unit sold under the bill's order back to
    available (with an inbound movement). Without restock the sold units keep
    their status but lose their bill/order references.
    """
    bill = db.session.get(Bill, bill_id)
    if not bill:
        raise BillNotFound(bill_id)
    order_id = bill.order_id

    restocked = 0
    if restock and order_id is not None:
        restocked = reverse_to_available(order_id, actor_id=actor_id)

    def _op():
        target = db.session.get(Bill, bill_id)
        if target is None:
            raise BillNotFound(bill_id)
        now = utcnow()

        for model in (StockUnit, StockUnitPair):
            db.session.query(model).filter(model.bill_id == bill_id).update(
                {model.bill_id: None, model.updated_at: now}, synchronize_session=False
            )

        db.session.query(PaymentEntry).filter(PaymentEntry.bill_id == bill_id).delete(
            synchronize_session=False
        )
        db.session.query(Bill).filter(Bill.id == bill_id).delete(synchronize_session=False)
        db.session.expunge(target)

        order_deleted = False
        if order_id is not None:
            other_bills = db.session.query(Bill.id).filter(Bill.order_id == order_id).first()
            if other_bills is None:
                for model in (StockUnit, StockUnitPair):
                    db.session.query(model).filter(model.order_id == order_id).update(
                        {model.order_id: None, model.updated_at: now}, synchronize_session=False
                    )
                db.session.query(Order).filter(Order.id == order_id).delete(synchronize_session=False)
                order_deleted = True

        db.session.commit()
        return order_deleted

    order_deleted = run_with_retry(_op)
    current_app.logger.info(
        "Bill %s deleted (restock=%s, units restocked=%s)", bill_id, restock, restocked
    )
    return {
        "bill_id": bill_id,
        "order_id": order_id,
        "order_deleted": order_deleted,
        "restocked": restocked,
    }
