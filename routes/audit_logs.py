import json

from flask import Blueprint, jsonify, request, g
from models.audit_log import AuditLog
from security.rbac import require_roles
from utils.auth_context import tenant_required

audit_bp = Blueprint("audit", __name__)


@audit_bp.get("/audit-logs")
@require_roles("ADMIN")
@tenant_required
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    actor_id = request.args.get("actor_id")
    entity = request.args.get("entity")

    # Tenant admins only ever see their own trail
    q = AuditLog.query.filter(AuditLog.tenant_id == g.tenant_id)
    if action:
        q = q.filter(AuditLog.action == action)
    if actor_id:
        q = q.filter(AuditLog.actor_id == actor_id)
    if entity:
        q = q.filter(AuditLog.entity == entity)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()

    out = []
    for r in rows:
        out.append({
            "id": r.id,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            "actor_id": r.actor_id,
            "action": r.action,
            "entity": r.entity,
            "entity_id": r.entity_id,
            "ip": r.ip,
            "user_agent": r.user_agent,
            "metadata": json.loads(r.metadata_json) if r.metadata_json else None,
        })

    return jsonify(out), 200
