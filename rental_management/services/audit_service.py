from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import AuditLog


def log_audit(
    db: Session,
    dealer_id: int | None,
    entity_type: str,
    entity_id: int,
    action: str,
    details: str | None = None,
) -> None:
    db.add(
        AuditLog(
            DealerID=dealer_id,
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            CreatedAt=datetime.now(),
        )
    )


def list_audit_entries(db: Session, dealer_id: int, entity_type: str | None = None, limit: int = 100) -> list[dict]:
    stmt = select(AuditLog).where(AuditLog.DealerID == dealer_id)
    if entity_type:
        stmt = stmt.where(AuditLog.EntityType == entity_type)
    rows = db.execute(stmt.order_by(AuditLog.AuditID.desc()).limit(max(1, limit))).scalars().all()
    return [
        {
            "auditID": row.AuditID,
            "entityType": row.EntityType,
            "entityID": row.EntityID,
            "action": row.Action,
            "details": row.Details,
            "createdAt": row.CreatedAt,
        }
        for row in rows
    ]
