# Overview: Flask API routes for cached catalog listings.

from flask import Blueprint, request, jsonify

from ..services import catalog_service
from ..validation import coerce_bool
from ..decorators import service_errors


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("/variants")
@service_errors("list variants")
def list_variants_route():
    variants = catalog_service.list_variants()
    return jsonify({"variants": variants, "count": len(variants)}), 200


@catalog_bp.get("/locations")
@service_errors("list locations")
def list_locations_route():
    locations = catalog_service.list_locations(
        include_inactive=coerce_bool(request.args.get("include_inactive")),
    )
    return jsonify({"locations": locations, "count": len(locations)}), 200
