# Overview: Flask API route for batch availability metrics.

from flask import Blueprint, jsonify

from ..services import availability_service
from ..validation import get_json_body, coerce_bool, ValidationError
from ..decorators import service_errors


availability_bp = Blueprint("availability", __name__, url_prefix="/api/availability")


@availability_bp.post("/")
@service_errors("compute availability")
def availability_route():
    """
    Request body:
    {
        "pairs": [{"variant_id": 1, "location_id": 2}, ...],
        "sweep": true   (optional)
    }

    Returns one entry per requested pair, zeros when no units exist.
    """
    data = get_json_body()
    pairs = data.get("pairs")
    if not isinstance(pairs, list) or not pairs:
        raise ValidationError("pairs must be a non-empty list")

    sweep = coerce_bool(data["sweep"]) if "sweep" in data else None
    metrics = availability_service.get_availability_metrics(pairs, sweep=sweep)
    return jsonify({
        "metrics": [
            {"variant_id": variant_id, "location_id": location_id, **m.to_dict()}
            for (variant_id, location_id), m in metrics.items()
        ]
    }), 200
