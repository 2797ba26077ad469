from flask import current_app, jsonify

from ..errors import CoreError, ValidationError
from ..extensions import db


def json_error(exc: Exception):
    """Roll back the request's transaction and map a failure to a JSON response."""
    db.session.rollback()
    if isinstance(exc, CoreError):
        return jsonify(exc.to_dict()), exc.http_status
    current_app.logger.exception("Unhandled error")
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def missing_field(exc: KeyError):
    db.session.rollback()
    return jsonify({"error": f"Missing required field: {exc}", "code": "VALIDATION_ERROR"}), 400


def int_field(data: dict, name: str) -> int:
    """Required integer field of a JSON body; KeyError when absent."""
    value = data[name]
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
