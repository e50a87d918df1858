# Overview: Route decorators mapping service exceptions onto JSON error responses.

from functools import wraps

from flask import jsonify, current_app

from .errors import NotFoundError, ConflictError, StorageError


def service_errors(action: str):
    """
    Translate service-layer exceptions raised inside a route.

    - NotFoundError -> 404
    - ConflictError -> 409
    - ValueError (incl. ValidationError) -> 400
    - StorageError -> 503, logged
    - anything else -> 500, logged with traceback

    `action` names the operation in log lines ("reserve units").
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except NotFoundError as e:
                return jsonify({"error": str(e)}), 404
            except ConflictError as e:
                return jsonify({"error": str(e)}), 409
            except ValueError as e:
                return jsonify({"error": str(e)}), 400
            except StorageError:
                current_app.logger.exception("Storage failure during %s", action)
                return jsonify({"error": "Storage unavailable, please retry"}), 503
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator
