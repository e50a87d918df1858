# Overview: Flask API routes for cart reservations; parses input and returns JSON responses.

"""
Reservation API Routes

WHY: The POS cart holds units while the customer checks out, then sells
them, or lets them go.

DESIGN:
- Shortfall is a 200 with "N of M reserved" in the body, never an error
- Fulfilling a key that no longer holds anything answers 200 with sold=0;
  the client must re-validate before charging
- POST /sweep is safe to call from cron or from the client on startup
"""

from flask import Blueprint, request, jsonify

from ..services import reservation_service
from ..validation import get_json_body, coerce_int, coerce_int_list, coerce_str
from ..decorators import service_errors


reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


@reservations_bp.post("/")
@service_errors("reserve units")
def reserve_route():
    """
    Reserve units for a cart.

    Request body:
    {
        "reservation_key": "cart-7f3a",
        "variant_id": 1,
        "location_id": 2,
        "quantity": 3,
        "ttl_seconds": 900,       (optional)
        "unit_id": 17,            (optional: reserve exactly this unit)
        "unit_code": "AC1001IN"   (optional: same, by code)
    }
    """
    data = get_json_body()
    result = reservation_service.reserve(
        variant_id=coerce_int("variant_id", data.get("variant_id")),
        location_id=coerce_int("location_id", data.get("location_id")),
        quantity=coerce_int("quantity", data.get("quantity"), minimum=1) or 1,
        reservation_key=coerce_str("reservation_key", data.get("reservation_key"), required=True),
        ttl_seconds=coerce_int("ttl_seconds", data.get("ttl_seconds"), minimum=1),
        unit_id=coerce_int("unit_id", data.get("unit_id")),
        unit_code=coerce_str("unit_code", data.get("unit_code")),
    )
    return jsonify(result.to_dict()), 200


@reservations_bp.post("/<reservation_key>/release")
@service_errors("release reservation")
def release_route(reservation_key: str):
    released = reservation_service.release(reservation_key)
    return jsonify({"reservation_key": reservation_key, "released": released}), 200


@reservations_bp.post("/release-units")
@service_errors("release units")
def release_units_route():
    data = get_json_body()
    released = reservation_service.release_units(coerce_int_list("unit_ids", data.get("unit_ids")))
    return jsonify({"released": released}), 200


@reservations_bp.post("/<reservation_key>/fulfill")
@service_errors("fulfill reservation")
def fulfill_route(reservation_key: str):
    """
    Sell everything still held under the key.

    Request body:
    {
        "order_id": 12,
        "customer_id": 4,   (optional)
        "bill_id": 9,       (optional)
        "notes": "..."      (optional)
    }
    """
    data = get_json_body()
    units = reservation_service.fulfill(
        reservation_key,
        order_id=coerce_int("order_id", data.get("order_id"), required=True),
        customer_id=coerce_int("customer_id", data.get("customer_id")),
        bill_id=coerce_int("bill_id", data.get("bill_id")),
        notes=data.get("notes"),
        actor_id=coerce_int("actor_id", data.get("actor_id")),
    )
    return jsonify({
        "reservation_key": reservation_key,
        "sold": len(units),
        "units": [u.to_dict() for u in units],
    }), 200


@reservations_bp.get("/")
@service_errors("list reservation keys")
def list_reservation_keys_route():
    keys = reservation_service.get_active_reservation_keys()
    return jsonify({"reservation_keys": keys, "count": len(keys)}), 200


@reservations_bp.get("/<reservation_key>")
@service_errors("load reservation")
def reservation_details_route(reservation_key: str):
    return jsonify(reservation_service.get_reservation_details(reservation_key)), 200


@reservations_bp.post("/sweep")
@service_errors("sweep reservations")
def sweep_route():
    """
    Cleanup pass.

    Request body (all optional):
    {
        "stale_hours": 6,
        "active_keys": ["cart-1", "cart-2"]   (omit to skip abandoned-cart release)
    }
    """
    data = get_json_body()
    active_keys = data.get("active_keys")
    if active_keys is not None and not isinstance(active_keys, list):
        return jsonify({"error": "active_keys must be a list"}), 400

    report = reservation_service.perform_cleanup(
        active_keys=active_keys,
        stale_hours=coerce_int("stale_hours", data.get("stale_hours"), minimum=1),
    )
    status = 200 if not report["errors"] else 207
    return jsonify(report), status


@reservations_bp.post("/sell")
@service_errors("sell units")
def direct_sale_route():
    """FIFO sale of free units without a cart reservation."""
    data = get_json_body()
    result = reservation_service.sell_available_units(
        variant_id=coerce_int("variant_id", data.get("variant_id"), required=True),
        location_id=coerce_int("location_id", data.get("location_id"), required=True),
        quantity=coerce_int("quantity", data.get("quantity"), required=True, minimum=1),
        order_id=coerce_int("order_id", data.get("order_id")),
        customer_id=coerce_int("customer_id", data.get("customer_id")),
        bill_id=coerce_int("bill_id", data.get("bill_id")),
        notes=data.get("notes"),
        actor_id=coerce_int("actor_id", data.get("actor_id")),
    )
    return jsonify(result.to_dict()), 200
