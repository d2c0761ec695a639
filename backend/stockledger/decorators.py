# Overview: Request decorators that resolve the acting user for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


ACTOR_HEADER = "X-User-Id"


def _load_actor():
    raw = request.headers.get(ACTOR_HEADER)
    if raw is None or raw.strip() == "":
        return None, None
    try:
        user_id = int(raw)
    except ValueError:
        return None, (jsonify({"error": f"{ACTOR_HEADER} must be an integer"}), 400)

    user = db.session.get(User, user_id)
    if not user:
        return None, (jsonify({"error": "Unknown user"}), 401)
    if not user.is_active:
        return None, (jsonify({"error": "User account is deactivated"}), 403)
    return user, None


def with_actor(f):
    """
    Resolve the acting user (if any) into g.current_user.

    The header is optional: anonymous calls run with g.current_user = None,
    which means no attribution and no discount ceiling.
    Returns 400/401/403 for a malformed, unknown or deactivated user id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user, error = _load_actor()
        if error:
            return error
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_actor(f):
    """
    Like with_actor, but a known user is mandatory.

    Used on money-moving routes so every ledger row is attributed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user, error = _load_actor()
        if error:
            return error
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def current_actor():
    return getattr(g, "current_user", None)
