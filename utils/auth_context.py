from functools import wraps
from flask import g, jsonify, request, current_app

from scheduling.providers import get_tenant
from security.rbac import normalize_role

def _header(name):
    return (request.headers.get(current_app.config[name]) or "").strip()

def load_current_actor():
    tenant = _header("TENANT_HEADER")
    g.tenant_id = int(tenant) if tenant.isdigit() else None
    g.actor_id = _header("ACTOR_ID_HEADER") or None
    g.actor_role = normalize_role(_header("ACTOR_ROLE_HEADER"))

def tenant_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "tenant_id", None) is None:
            return jsonify(error="Tenant context required"), 400
        # Raises NotFoundError for unknown/inactive tenants
        get_tenant(g.tenant_id)
        return fn(*args, **kwargs)
    return wrapper

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "actor_id", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
