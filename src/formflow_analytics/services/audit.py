"""Audit logging service"""
import json
from typing import Optional, List, Dict, Any
from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from src.formflow_analytics.models.audit_log import AuditLog
from src.formflow_analytics.timeutil import as_utc


def log_action(
    db: Session,
    action: str,
    target_type: str,
    target_id: Optional[int] = None,
    meta: Optional[dict] = None,
    actor: str = "system",
) -> AuditLog:
    audit_log = AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_json=json.dumps(meta) if meta else None
    )
    db.add(audit_log)
    db.commit()
    db.refresh(audit_log)
    return audit_log


def get_actions(
    db: Session,
    actions: List[str],
    target_id: Optional[int] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    conditions = [AuditLog.action.in_(actions)]
    if target_id is not None:
        conditions.append(AuditLog.target_id == target_id)

    logs = db.execute(
        select(AuditLog)
        .where(and_(*conditions))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    ).scalars().all()

    return [
        {
            "id": log.id,
            "actor": log.actor,
            "action": log.action,
            "target_id": log.target_id,
            "meta": json.loads(log.meta_json) if log.meta_json else {},
            "created_at": as_utc(log.created_at).isoformat(),
        }
        for log in logs
    ]
