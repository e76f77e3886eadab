# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


def require_actor(f):
    """
    Resolve the acting user and establish tenant context.

    Identity is established upstream by the authentication layer, which
    forwards the user id in the X-User-Id header. Sets:
    - g.current_user: the acting User
    - g.org_id: the user's organization (tenant context)

    Returns 401 if the header is missing, malformed, or names an unknown,
    deleted or inactive user. Privilege checks happen in the engine.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw.isdigit():
            return jsonify({"status": 401, "message": "Authentication required", "data": None}), 401

        user = db.session.query(User).filter(
            User.id == int(raw),
            User.is_deleted.is_(False),
        ).first()
        if user is None or not user.is_active:
            return jsonify({"status": 401, "message": "Invalid or inactive user", "data": None}), 401

        g.current_user = user
        g.org_id = user.org_id
        return f(*args, **kwargs)

    return decorated_function
