from __future__ import annotations
import logging
from typing import Dict, Mapping, Optional

from washops.constants.permissions import is_known_permission
from washops.errors import NotFound, PermissionDenied, ValidationError
from washops.services.audit import add_audit
from washops.services.policy import assert_can_manage_roles, assert_manages_role, assert_role_visible
from washops.services.session import ActorSession, SessionManager
from washops.services.store import AuthzStore
from washops.utils.locks import RoleLocks

logger = logging.getLogger(__name__)


class OverrideStore:
    """Explicit per-role grants/revocations layered over archetype defaults.

    ``apply_changes`` takes ``{key: True | False | None}``: booleans upsert an
    override row, ``None`` deletes it so the archetype default applies again.
    A row with ``granted=False`` and a missing row are different states.
    """

    def __init__(self, store: AuthzStore, sessions: Optional[SessionManager] = None,
                 locks: Optional[RoleLocks] = None):
        self.store = store
        self.sessions = sessions
        self.locks = locks or RoleLocks()

    def get_overrides(self, role_id: int) -> Dict[str, bool]:
        return dict(self.store.load_overrides(role_id))

    def apply_changes(self, actor: Optional[ActorSession], role_id: int,
                      changes: Mapping[str, Optional[bool]]) -> Dict[str, bool]:
        actor = assert_can_manage_roles(actor)
        if not isinstance(changes, Mapping):
            raise ValidationError('changes must be an object of permission -> true/false/null')
        bad_values = sorted(k for k, v in changes.items() if v is not None and not isinstance(v, bool))
        if bad_values:
            raise ValidationError(f'Values must be true, false or null: {bad_values}')
        unknown = sorted(k for k in changes if not is_known_permission(k))
        if unknown:
            raise NotFound(f'Unknown permission keys: {unknown}')

        role = assert_role_visible(actor, self.store.find_role(role_id))
        with self.locks.hold(role.tenant_id, role.id):
            self.store.session.refresh(role)
            assert_manages_role(actor, role)
            if not actor.is_root:
                # Nobody grants what they do not hold themselves
                beyond = sorted(k for k, v in changes.items() if v is True and not actor.has(k))
                if beyond:
                    raise PermissionDenied(f'Cannot grant permissions you do not hold: {beyond}')
            ids = self.store.permission_ids(list(changes))
            missing = sorted(set(changes) - set(ids))
            if missing:
                raise NotFound(f'Permissions not seeded: {missing}')
            if not changes:
                return self.get_overrides(role.id)

            if self.sessions is not None:
                self.sessions.role_changed(role.id)
            try:
                with self.store.transaction() as session:
                    for key in sorted(changes):
                        granted = changes[key]
                        if granted is None:
                            self.store.delete_override(role.id, ids[key])
                        else:
                            self.store.upsert_override(role.id, ids[key], granted)
                    self.store.touch_role(role)
                    add_audit(session, actor, 'ROLE.PERM.APPLY', 'Role', role.id,
                              {'changes': {k: changes[k] for k in sorted(changes)}}, tenant_id=role.tenant_id)
            except Exception:
                logger.exception('Override batch for role %s rolled back', role_id)
                raise
            if self.sessions is not None:
                self.sessions.role_changed(role.id)
        logger.info('User %s applied %d override change(s) to role %s', actor.user_id, len(changes), role.id)
        return self.get_overrides(role.id)
