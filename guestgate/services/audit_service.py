import json
from typing import Any

from sqlalchemy.orm import Session

from guestgate.db.models import AuditLog


def write_audit_log(
    db: Session,
    actor_id: str | None,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    row = AuditLog(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        meta_json=json.dumps(meta or {}, ensure_ascii=True, default=str),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_audit_logs(db: Session, action: str | None = None, limit: int = 200) -> list[dict[str, Any]]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    rows = query.order_by(AuditLog.created_at.desc()).limit(limit).all()
    return [
        {
            "id": row.id,
            "actorId": row.actor_id,
            "action": row.action,
            "resourceType": row.resource_type,
            "resourceId": row.resource_id,
            "meta": json.loads(row.meta_json or "{}"),
            "createdAt": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]
