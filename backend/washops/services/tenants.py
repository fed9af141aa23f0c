from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Optional

from washops.errors import PermissionDenied
from washops.models.authz import Tenant
from washops.services.audit import add_audit
from washops.services.session import ActorSession, SessionManager, require_actor
from washops.services.store import AuthzStore

logger = logging.getLogger(__name__)


def set_tenant_active(store: AuthzStore, sessions: Optional[SessionManager], actor: Optional[ActorSession],
                      tenant_id: int, active: bool, reason: Optional[str] = None) -> Tenant:
    """Root-only. Deactivation signs out every non-root actor of the tenant."""
    actor = require_actor(actor)
    if not actor.is_root:
        raise PermissionDenied('Only root can change company status')
    tenant = store.load_tenant(tenant_id)
    if tenant.is_active == active:
        return tenant
    if not active and sessions is not None:
        sessions.tenant_deactivated(tenant.id)
    with store.transaction() as session:
        tenant.is_active = active
        tenant.deactivation_reason = None if active else reason
        tenant.deactivated_at = None if active else datetime.now(timezone.utc)
        add_audit(session, actor, 'TENANT.ACTIVATE' if active else 'TENANT.DEACTIVATE', 'Tenant', tenant.id,
                  {'reason': reason} if reason else {}, tenant_id=tenant.id)
    logger.info('User %s set tenant %s active=%s', actor.user_id, tenant.id, active)
    return tenant
