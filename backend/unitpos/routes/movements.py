# Overview: Flask API route for the stock movement audit trail.

from flask import Blueprint, request, jsonify

from ..services import movement_service
from ..validation import coerce_int
from ..decorators import service_errors


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.get("/")
@service_errors("list movements")
def list_movements_route():
    movements = movement_service.get_recent_movements(
        limit=coerce_int("limit", request.args.get("limit"), minimum=1) or 50,
        variant_id=coerce_int("variant_id", request.args.get("variant_id")),
        location_id=coerce_int("location_id", request.args.get("location_id")),
    )
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200
