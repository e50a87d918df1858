# Overview: Flask API routes for paired stock units; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import pair_service
from ..errors import PairNotFound
from ..validation import get_json_body, coerce_int, coerce_str
from ..decorators import service_errors


pairs_bp = Blueprint("pairs", __name__, url_prefix="/api/pairs")


@pairs_bp.post("/")
@service_errors("create pair")
def create_pair_route():
    """
    Request body:
    {
        "primary_unit_id": 10,
        "secondary_unit_id": 11,
        "combined_code": "AC-1001",
        "notes": "..."   (optional)
    }
    """
    data = get_json_body()
    pair = pair_service.create_pair(
        primary_unit_id=coerce_int("primary_unit_id", data.get("primary_unit_id"), required=True),
        secondary_unit_id=coerce_int("secondary_unit_id", data.get("secondary_unit_id"), required=True),
        combined_code=coerce_str("combined_code", data.get("combined_code"), required=True, max_length=64),
        notes=data.get("notes"),
    )
    return jsonify({"pair": pair.to_dict()}), 201


@pairs_bp.get("/")
@service_errors("list pairs")
def list_pairs_route():
    pairs = pair_service.list_pairs(status=request.args.get("status") or None)
    return jsonify({"pairs": [p.to_dict() for p in pairs], "count": len(pairs)}), 200


@pairs_bp.get("/<int:pair_id>")
@service_errors("load pair")
def get_pair_route(pair_id: int):
    pair = pair_service.get_pair(pair_id)
    if not pair:
        raise PairNotFound(pair_id)
    return jsonify({"pair": pair.to_dict()}), 200


@pairs_bp.get("/code/<path:combined_code>")
@service_errors("look up pair")
def get_pair_by_code_route(combined_code: str):
    expanded = pair_service.get_pair_expanded(combined_code)
    if expanded is None:
        raise PairNotFound(combined_code)
    return jsonify({"pair": expanded}), 200


@pairs_bp.post("/<int:pair_id>/reserve")
@service_errors("reserve pair")
def reserve_pair_route(pair_id: int):
    data = get_json_body()
    pair = pair_service.reserve_pair(
        pair_id,
        coerce_str("reservation_key", data.get("reservation_key"), required=True),
        ttl_seconds=coerce_int("ttl_seconds", data.get("ttl_seconds"), minimum=1),
    )
    if pair is None:
        return jsonify({"reserved": False, "error": "Pair is not available"}), 409
    return jsonify({"reserved": True, "pair": pair.to_dict()}), 200


@pairs_bp.post("/<int:pair_id>/release")
@service_errors("release pair")
def release_pair_route(pair_id: int):
    released = pair_service.release_pair(pair_id)
    return jsonify({"released": released}), 200


@pairs_bp.post("/<int:pair_id>/sell")
@service_errors("sell pair")
def sell_pair_route(pair_id: int):
    data = get_json_body()
    pair = pair_service.sell_pair(
        pair_id,
        order_id=coerce_int("order_id", data.get("order_id")),
        customer_id=coerce_int("customer_id", data.get("customer_id")),
        bill_id=coerce_int("bill_id", data.get("bill_id")),
        notes=data.get("notes"),
        actor_id=coerce_int("actor_id", data.get("actor_id")),
        reservation_key=coerce_str("reservation_key", data.get("reservation_key")),
    )
    return jsonify({"pair": pair.to_dict()}), 200


@pairs_bp.delete("/<int:pair_id>")
@service_errors("dismantle pair")
def dismantle_pair_route(pair_id: int):
    unit_ids = pair_service.dismantle_pair(pair_id)
    return jsonify({"dismantled": True, "unit_ids": unit_ids}), 200
