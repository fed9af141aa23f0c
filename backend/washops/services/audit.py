from __future__ import annotations
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from washops.models.audit import AuditLog
from washops.services.session import ActorSession


def add_audit(session: Session, actor: ActorSession, action: str, entity: Optional[str] = None,
              entity_id: Optional[Any] = None, meta: Optional[Dict[str, Any]] = None,
              tenant_id: Optional[int] = None) -> AuditLog:
    """Stage an audit log entry in ``session``.

    Parameters:
      action: short action code e.g. ROLE.CREATE, ROLE.PERM.APPLY, USER.ROLE.SET
      entity: optional entity name (Role, User, Tenant)
      entity_id: optional primary key (stored as string)
      meta: additional JSON-safe dictionary (shallow copied)
      tenant_id: tenant the change belongs to; defaults to the actor's tenant
    """
    log = AuditLog(
        actor_user_id=actor.user_id,
        tenant_id=tenant_id if tenant_id is not None else actor.tenant_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
