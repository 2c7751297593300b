import json
from flask import g, has_request_context, request
from models import db
from models.audit_log import AuditLog

def log_event(action: str, entity=None, entity_id=None, metadata=None, tenant_id=None, actor_id=None):
    ip = None
    user_agent = ""
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = request.headers.get("User-Agent", "")
        tenant_id = tenant_id if tenant_id is not None else getattr(g, "tenant_id", None)
        actor_id = actor_id if actor_id is not None else getattr(g, "actor_id", None)

    row = AuditLog(
        tenant_id=tenant_id,
        actor_id=str(actor_id) if actor_id is not None else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    db.session.add(row)
    db.session.commit()
