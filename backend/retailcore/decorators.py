# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request


def require_actor(f):
    """
    Require an acting identity on mutating requests.

    Authentication happens upstream; the gateway forwards the already
    authorized actor in the X-Actor-Id header. Sets g.actor_id.

    Returns 401 if the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get("X-Actor-Id") or "").strip()
        if not raw:
            return jsonify({"error": "Actor identity required", "code": "UNAUTHORIZED"}), 401
        try:
            actor_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid actor identity", "code": "UNAUTHORIZED"}), 401
        if actor_id <= 0:
            return jsonify({"error": "Invalid actor identity", "code": "UNAUTHORIZED"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
