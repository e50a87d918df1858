# Overview: Flask API routes for stock units; parses input and returns JSON responses.

"""
Stock Unit API Routes

DESIGN:
- Intake one unit per request (scanner flow)
- Removal is batch and idempotent: skipped units are reported via the count
- Lookup by code never 404s on a miss; it answers {"unit": null}
"""

from flask import Blueprint, request, jsonify

from ..services import unit_service
from ..errors import UnitNotFound
from ..validation import get_json_body, coerce_int, coerce_int_list, coerce_str
from ..decorators import service_errors


units_bp = Blueprint("units", __name__, url_prefix="/api/units")


@units_bp.post("/")
@service_errors("create stock unit")
def create_unit_route():
    """
    Register a unit.

    Request body:
    {
        "variant_id": 1,
        "location_id": 2,
        "unit_code": "AC-1001-IN",
        "status": "available",   (optional: available | damaged)
        "notes": "..."           (optional)
    }
    """
    data = get_json_body()
    unit = unit_service.create_unit(
        variant_id=coerce_int("variant_id", data.get("variant_id"), required=True),
        location_id=coerce_int("location_id", data.get("location_id"), required=True),
        unit_code=coerce_str("unit_code", data.get("unit_code"), required=True, max_length=64),
        status=data.get("status") or "available",
        notes=data.get("notes"),
        actor_id=coerce_int("actor_id", data.get("actor_id")),
    )
    return jsonify({"unit": unit.to_dict()}), 201


@units_bp.get("/")
@service_errors("list stock units")
def list_units_route():
    units = unit_service.list_units(
        variant_id=coerce_int("variant_id", request.args.get("variant_id")),
        location_id=coerce_int("location_id", request.args.get("location_id")),
        status=request.args.get("status") or None,
        limit=coerce_int("limit", request.args.get("limit"), minimum=1),
    )
    return jsonify({"units": [u.to_dict() for u in units], "count": len(units)}), 200


@units_bp.get("/count")
@service_errors("count stock units")
def count_units_route():
    variant_id = coerce_int("variant_id", request.args.get("variant_id"), required=True)
    location_id = coerce_int("location_id", request.args.get("location_id"), required=True)
    status = request.args.get("status") or None
    count = unit_service.count_units(variant_id, location_id, status=status)
    return jsonify({
        "variant_id": variant_id,
        "location_id": location_id,
        "status": status,
        "count": count,
    }), 200


@units_bp.get("/<int:unit_id>")
@service_errors("load stock unit")
def get_unit_route(unit_id: int):
    unit = unit_service.get_unit(unit_id)
    if not unit:
        raise UnitNotFound(unit_id)
    return jsonify({"unit": unit.to_dict()}), 200


@units_bp.patch("/<int:unit_id>")
@service_errors("update stock unit")
def update_unit_route(unit_id: int):
    """Allowed fields: notes, unit_code, location_id, status (available <-> damaged)."""
    data = get_json_body()
    if "location_id" in data:
        data["location_id"] = coerce_int("location_id", data["location_id"], required=True)
    unit = unit_service.update_unit(unit_id, data)
    return jsonify({"unit": unit.to_dict()}), 200


@units_bp.post("/remove")
@service_errors("remove stock units")
def remove_units_route():
    """
    Remove free units.

    Request body:
    {
        "unit_ids": [1, 2, 3],
        "mode": "delete" | "damage",
        "reason": "Dented in transit"   (optional)
    }
    """
    data = get_json_body()
    unit_ids = coerce_int_list("unit_ids", data.get("unit_ids"))
    if not unit_ids:
        return jsonify({"error": "unit_ids required"}), 400

    removed = unit_service.remove_units(
        unit_ids,
        mode=data.get("mode") or unit_service.REMOVE_MODE_DELETE,
        reason=data.get("reason"),
        actor_id=coerce_int("actor_id", data.get("actor_id")),
    )
    return jsonify({
        "requested": len(set(unit_ids)),
        "removed": removed,
        "skipped": len(set(unit_ids)) - removed,
    }), 200


@units_bp.get("/lookup/<path:code>")
@service_errors("look up stock unit")
def lookup_unit_route(code: str):
    unit = unit_service.resolve_by_code(code)
    return jsonify({
        "code": unit_service.normalize_unit_code(code),
        "unit": unit.to_dict() if unit else None,
    }), 200


@units_bp.post("/link-bill")
@service_errors("link units to bill")
def link_units_to_bill_route():
    data = get_json_body()
    unit_ids = coerce_int_list("unit_ids", data.get("unit_ids"))
    linked = unit_service.link_units_to_bill(
        unit_ids,
        bill_id=coerce_int("bill_id", data.get("bill_id"), required=True),
        order_id=coerce_int("order_id", data.get("order_id")),
        notes=data.get("notes"),
    )
    return jsonify({"linked": linked}), 200
