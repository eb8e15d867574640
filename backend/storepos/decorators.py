# Overview: Response envelope decorator for API routes.

from functools import wraps

from flask import current_app, jsonify

from .errors import PosError


def api_response(status: int = 200):
    """
    Wrap a route so it returns the JSON envelope.

    The route returns plain data; success is rendered as
    {"success": true, "data": ...}. A PosError becomes
    {"success": false, "error": ..., "details": ...} with the error's status
    code. Anything else is logged and reported as a 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                data = f(*args, **kwargs)
            except PosError as e:
                return jsonify({
                    "success": False,
                    "error": e.message,
                    "details": e.details,
                }), e.status_code
            except Exception:
                current_app.logger.exception("Unhandled error in %s", f.__name__)
                return jsonify({
                    "success": False,
                    "error": "Internal server error",
                    "details": {},
                }), 500

            return jsonify({"success": True, "data": data}), status

        return decorated_function

    return decorator
