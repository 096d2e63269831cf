# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .actor import Actor


def require_actor(f):
    """
    Require an acting identity and expose it as g.actor.

    Authentication itself happens upstream; this layer only trusts the
    X-Actor-Id / X-Actor-Name headers it forwards.

    Returns 401 if X-Actor-Id is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get("X-Actor-Id") or "").strip()
        if not user_id:
            return jsonify({"error": "Actor identity required", "code": "UNAUTHENTICATED"}), 401

        name = (request.headers.get("X-Actor-Name") or "").strip() or None
        g.actor = Actor(user_id=user_id, name=name)
        return f(*args, **kwargs)

    return decorated_function
