from functools import wraps
from flask import g, jsonify

# Roles the gateway may assert; anything else is treated as no role
KNOWN_ROLES = {"ADMIN", "STAFF", "CUSTOMER"}

def normalize_role(raw):
    role = (raw or "").strip().upper()
    return role if role in KNOWN_ROLES else None

def has_role(role_name: str) -> bool:
    return getattr(g, "actor_role", None) == role_name

def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN", "STAFF")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if getattr(g, "actor_id", None) is None:
                return jsonify(error="Authentication required"), 401

            if g.actor_role is None or g.actor_role not in role_names:
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
