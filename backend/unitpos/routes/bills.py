# Overview: Flask API routes for bills and their payment entries; parses input and returns JSON responses.

"""
Bill & Payment API Routes

DESIGN:
- Bills carry derived remaining_cents / payment_status; every payment
  mutation answers with the refreshed summary
- Overpayment and already-paid bills answer 409 with the remaining amount
- DELETE /<id>?restock=1 returns sold units to available before deleting
"""

from flask import Blueprint, request, jsonify

from ..services import bill_service, payment_service
from ..errors import BillNotFound
from ..validation import get_json_body, coerce_int, coerce_str, coerce_bool, coerce_datetime
from ..decorators import service_errors


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


@bills_bp.post("/")
@service_errors("create bill")
def create_bill_route():
    """
    Request body:
    {
        "total_cents": 10000,
        "customer_id": 4,          (optional, omit for walk-in)
        "order_id": 12,            (optional)
        "invoice_number": "INV-1"  (optional)
    }
    """
    data = get_json_body()
    bill = bill_service.create_bill(
        total_cents=coerce_int("total_cents", data.get("total_cents"), required=True, minimum=0),
        customer_id=coerce_int("customer_id", data.get("customer_id")),
        order_id=coerce_int("order_id", data.get("order_id")),
        invoice_number=coerce_str("invoice_number", data.get("invoice_number"), max_length=64),
        created_by=coerce_int("actor_id", data.get("actor_id")),
    )
    return jsonify({"bill": bill.to_dict()}), 201


@bills_bp.get("/<int:bill_id>")
@service_errors("load bill")
def get_bill_route(bill_id: int):
    bill = bill_service.get_bill(bill_id)
    if not bill:
        raise BillNotFound(bill_id)
    return jsonify({"bill": bill.to_dict()}), 200


@bills_bp.delete("/<int:bill_id>")
@service_errors("delete bill")
def delete_bill_route(bill_id: int):
    result = bill_service.delete_bill(
        bill_id,
        restock=coerce_bool(request.args.get("restock")),
        actor_id=coerce_int("actor_id", request.args.get("actor_id")),
    )
    return jsonify(result), 200


# =============================================================================
# PAYMENT ENTRIES
# =============================================================================

@bills_bp.get("/<int:bill_id>/payments")
@service_errors("load bill payments")
def bill_payments_route(bill_id: int):
    return jsonify(payment_service.get_bill_payment_summary(bill_id)), 200


@bills_bp.post("/<int:bill_id>/payments")
@service_errors("add payment entry")
def create_payment_entry_route(bill_id: int):
    """
    Request body:
    {
        "amount_cents": 5000,
        "payment_method": "cash",   (cash, card, upi, bank_transfer, cheque, other)
        "customer_id": 4,           (optional, defaults to the bill's customer)
        "payment_date": "2026-01-05T10:00:00Z",   (optional)
        "reference_number": "...",  (optional)
        "utr_number": "...",        (optional)
        "notes": "..."              (optional)
    }
    """
    data = get_json_body()
    entry = payment_service.create_payment_entry(
        bill_id=bill_id,
        amount_cents=coerce_int("amount_cents", data.get("amount_cents"), required=True),
        payment_method=data.get("payment_method") or payment_service.METHOD_CASH,
        customer_id=coerce_int("customer_id", data.get("customer_id")),
        payment_date=coerce_datetime("payment_date", data.get("payment_date")),
        reference_number=coerce_str("reference_number", data.get("reference_number")),
        utr_number=coerce_str("utr_number", data.get("utr_number")),
        notes=data.get("notes"),
        created_by=coerce_int("actor_id", data.get("actor_id")),
    )
    return jsonify({
        "entry": entry.to_dict(),
        "summary": payment_service.get_bill_payment_summary(bill_id),
    }), 201


@bills_bp.patch("/payments/<int:entry_id>")
@service_errors("update payment entry")
def update_payment_entry_route(entry_id: int):
    data = get_json_body()
    fields = dict(data)
    if "amount_cents" in fields:
        fields["amount_cents"] = coerce_int("amount_cents", fields["amount_cents"], required=True)
    if "payment_date" in fields:
        fields["payment_date"] = coerce_datetime("payment_date", fields["payment_date"])
    entry = payment_service.update_payment_entry(entry_id, fields)
    return jsonify({
        "entry": entry.to_dict(),
        "summary": payment_service.get_bill_payment_summary(entry.bill_id),
    }), 200


@bills_bp.delete("/payments/<int:entry_id>")
@service_errors("delete payment entry")
def delete_payment_entry_route(entry_id: int):
    bill = payment_service.delete_payment_entry(entry_id)
    return jsonify({"summary": payment_service.get_bill_payment_summary(bill.id)}), 200


@bills_bp.post("/<int:bill_id>/recompute")
@service_errors("recompute bill")
def recompute_bill_route(bill_id: int):
    bill = payment_service.recompute_bill_status(bill_id)
    return jsonify({"bill": bill.to_dict()}), 200
