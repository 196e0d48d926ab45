from __future__ import annotations

from sqlalchemy.orm import Session

from app.auth import Principal
from app.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor: Principal | None,
    action: str,
    entity_type: str,
    entity_id: int,
    ip: str | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_id=actor.id if actor else None,
            actor_name=actor.name if actor else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=ip,
            meta=metadata or {},
        )
    )
