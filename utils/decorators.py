from functools import wraps
from flask import jsonify, current_app
from extensions import db


def json_endpoint(error_code):
    """
    Outermost error boundary for optimizer endpoints.

    Any exception escaping the view is logged with its traceback, the database session is rolled
    back, and the client receives HTTP 500 with {"error": error_code, "message": str(exc)}.
    Validation failures are expected to be returned by the view itself as 4xx responses.

    Args:
        error_code (str): Machine-readable error tag, e.g. 'sync_error'.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f"{error_code} in {f.__name__}: {e}", exc_info=True)
                return jsonify({"error": error_code, "message": str(e) or e.__class__.__name__}), 500
        return decorated_function
    return decorator
