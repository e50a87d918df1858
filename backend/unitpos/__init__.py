# backend/unitpos/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .cache import TTLCache
from .services.capabilities import EXTENSION_KEY as EXPIRY_EXTENSION_KEY, ReservationExpirySupport
from .services.catalog_service import CACHE_EXTENSION_KEY, register_cache_invalidation


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_object is not None:
        if isinstance(config_object, dict):
            app.config.update(config_object)
        else:
            app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Per-app collaborators consulted by the services
    app.extensions[EXPIRY_EXTENSION_KEY] = ReservationExpirySupport(
        forced=app.config.get("RESERVATION_EXPIRY_SUPPORT"),
    )
    app.extensions[CACHE_EXTENSION_KEY] = TTLCache(
        default_ttl=app.config.get("CATALOG_CACHE_TTL_SECONDS", 60),
    )
    register_cache_invalidation()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.units import units_bp
    from .routes.reservations import reservations_bp
    from .routes.pairs import pairs_bp
    from .routes.availability import availability_bp
    from .routes.bills import bills_bp
    from .routes.catalog import catalog_bp
    from .routes.movements import movements_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(units_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(pairs_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(bills_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(movements_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
