# Overview: Service-layer operations for catalog reference data (products, variants, locations, customers).

"""
Catalog listings are read on every POS screen but change rarely, so
list_variants/list_locations are served from the app's TTLCache. ORM
listeners on the catalog models drop the cached entries whenever a row is
inserted, updated or deleted.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import event

from ..extensions import db
from ..models import Product, ProductVariant, Location, Customer


CACHE_EXTENSION_KEY = "unitpos.cache"

CACHE_VARIANTS = "catalog:variants"
CACHE_LOCATIONS = "catalog:locations"


def get_cache():
    return current_app.extensions[CACHE_EXTENSION_KEY]


def list_variants() -> list[dict]:
    def _load():
        variants = db.session.query(ProductVariant).order_by(ProductVariant.sku.asc()).all()
        return [variant.to_dict() for variant in variants]
    return get_cache().get_or_load(CACHE_VARIANTS, _load)


def list_locations(include_inactive: bool = False) -> list[dict]:
    def _load():
        locations = db.session.query(Location).order_by(Location.code.asc()).all()
        return [location.to_dict() for location in locations]
    rows = get_cache().get_or_load(CACHE_LOCATIONS, _load)
    if include_inactive:
        return rows
    return [row for row in rows if row["is_active"]]


def create_product(name: str, description: str | None = None) -> Product:
    if not (name or "").strip():
        raise ValueError("Product name is required")
    product = Product(name=name.strip(), description=description)
    db.session.add(product)
    db.session.commit()
    return product


def create_variant(
    product_id: int,
    sku: str,
    variant_name: str,
    price_cents: int | None = None,
    low_stock_threshold: int = 0,
) -> ProductVariant:
    if db.session.get(Product, product_id) is None:
        raise ValueError(f"Product {product_id} not found")
    sku = (sku or "").strip()
    if not sku:
        raise ValueError("sku is required")
    variant = ProductVariant(
        product_id=product_id,
        sku=sku,
        variant_name=variant_name,
        price_cents=price_cents,
        low_stock_threshold=low_stock_threshold,
    )
    db.session.add(variant)
    db.session.commit()
    return variant


def create_location(code: str, name: str) -> Location:
    code = (code or "").strip().upper()
    if not code:
        raise ValueError("Location code is required")
    location = Location(code=code, name=name)
    db.session.add(location)
    db.session.commit()
    return location


def create_customer(name: str, phone: str | None = None, email: str | None = None) -> Customer:
    if not (name or "").strip():
        raise ValueError("Customer name is required")
    customer = Customer(name=name.strip(), phone=phone, email=email)
    db.session.add(customer)
    db.session.commit()
    return customer


# =============================================================================
# CACHE INVALIDATION
# =============================================================================

_CACHE_PATTERNS = {
    Product: "catalog:*",
    ProductVariant: CACHE_VARIANTS,
    Location: CACHE_LOCATIONS,
}

_registered = False


def _invalidate_for(pattern: str):
    def _listener(mapper, connection, target):
        # Listeners fire outside request context from CLI scripts without an app
        try:
            cache = get_cache()
        except (RuntimeError, KeyError):
            return
        cache.invalidate(pattern)
    return _listener


def register_cache_invalidation() -> None:
    """Attach after_insert/update/delete listeners to the cached catalog models (once per process)."""
    global _registered
    if _registered:
        return
    for model, pattern in _CACHE_PATTERNS.items():
        listener = _invalidate_for(pattern)
        for event_name in ("after_insert", "after_update", "after_delete"):
            event.listen(model, event_name, listener)
    _registered = True
