# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require an acting staff user for write operations.

    Sets the following Flask g attributes:
    - g.actor_id: The staff user ID performing the request

    Authentication itself happens upstream (terminal session / gateway);
    this only establishes who is recorded on ledger entries.

    Returns 401 if the X-User-Id header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()

        if not raw:
            return jsonify({"error": "Actor required"}), 401

        try:
            actor_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid actor"}), 401

        if actor_id <= 0:
            return jsonify({"error": "Invalid actor"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
