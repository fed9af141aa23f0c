"""Actor sessions: resolved role, tenant and effective permissions of a signed-in user.

A session is built once at sign-in from one engine pass over the catalog and
then answers ``has()`` with a set lookup. Mutations never patch a session in
place; they mark it ``stale`` (rebuilt on the next ``SessionManager.current``)
or ``revoked`` (forced sign-out). Neither state authorizes anything.
"""
from __future__ import annotations
import logging
import threading
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from washops.constants.permissions import ROOT, ADMIN
from washops.errors import NotFound, StaleSession, Unauthenticated
from washops.services.engine import effective_permissions
from washops.services.store import AuthzStore

logger = logging.getLogger(__name__)

ACTIVE = 'active'
STALE = 'stale'
REVOKED = 'revoked'

# Actor states for tenant isolation; fixed for the life of a session
STATE_ROOT = 'root'
STATE_TENANT_ADMIN = 'tenant_admin'
STATE_TENANT_SCOPED = 'tenant_scoped'

ROLE_MANAGE_PERMISSION = 'users.manage'
SIGNED_OUT = 'Signed out; sign in again'


class ActorSession:
    def __init__(self, user_id: int, role_id: int, archetype: str, level: int,
                 tenant_id: Optional[int], permissions: Iterable[str], role_name: str = '',
                 system_root: bool = False):
        self.user_id = user_id
        self.role_id = role_id
        self.role_name = role_name
        self.archetype = archetype
        self.level = level
        self.tenant_id = tenant_id
        # Only the global root system role confers root, never its archetype alone
        self.system_root = system_root and archetype == ROOT
        self.permissions: FrozenSet[str] = frozenset(permissions)
        self.status = ACTIVE
        self.revoked_reason: Optional[str] = None

    def __repr__(self):
        return f'<ActorSession user={self.user_id} role={self.role_id} level={self.level} status={self.status}>'

    @property
    def is_root(self) -> bool:
        return self.system_root

    @property
    def actor_state(self) -> str:
        if self.is_root:
            return STATE_ROOT
        if self.archetype == ADMIN and ROLE_MANAGE_PERMISSION in self.permissions:
            return STATE_TENANT_ADMIN
        return STATE_TENANT_SCOPED

    @property
    def can_manage_roles(self) -> bool:
        return self.actor_state in (STATE_ROOT, STATE_TENANT_ADMIN)

    @property
    def is_valid(self) -> bool:
        return self.status == ACTIVE

    def has(self, permission: str) -> bool:
        if self.status != ACTIVE:
            return False
        return permission in self.permissions

    def has_any(self, permissions: Iterable[str]) -> bool:
        return any(self.has(p) for p in permissions)

    def has_all(self, permissions: Iterable[str]) -> bool:
        return all(self.has(p) for p in permissions)

    def invalidate(self):
        if self.status == ACTIVE:
            self.status = STALE

    def revoke(self, reason: str):
        self.status = REVOKED
        self.revoked_reason = reason

    def ensure_valid(self):
        """Raise unless this session may authorize a mutation right now."""
        if self.status == REVOKED:
            raise Unauthenticated(self.revoked_reason or 'Session revoked; sign in again')
        if self.status == STALE:
            raise StaleSession()

    def to_dict(self) -> dict:
        return {
            'user_id': self.user_id,
            'role_id': self.role_id,
            'role': self.role_name,
            'archetype': self.archetype,
            'level': self.level,
            'tenant_id': self.tenant_id,
            'state': self.actor_state,
            'permissions': sorted(self.permissions),
        }


class SessionManager:
    """Per-process cache of actor sessions keyed by user id."""

    def __init__(self, store_factory: Callable[[], AuthzStore]):
        self._store_factory = store_factory
        self._sessions: Dict[int, ActorSession] = {}
        self._lock = threading.RLock()

    def build(self, user_id: int) -> ActorSession:
        """Resolve a fresh session from persistence, enforcing every deactivation check."""
        store = self._store_factory()
        try:
            user = store.load_user(user_id, fresh=True)
        except NotFound:
            raise Unauthenticated('Unknown user')
        if not user.is_active:
            raise Unauthenticated('User account is deactivated')
        role = store.find_role(user.role_id, fresh=True)
        if role is None or not role.is_active:
            raise Unauthenticated('Assigned role is inactive')
        system_root = role.archetype == ROOT and role.is_system_role and role.tenant_id is None
        if not system_root:
            tenant = store.find_tenant(user.tenant_id, fresh=True)
            if user.tenant_id is None or tenant is None:
                raise Unauthenticated('User has no tenant')
            if not tenant.is_active:
                detail = 'Company has been deactivated'
                if tenant.deactivation_reason:
                    detail += f': {tenant.deactivation_reason}'
                raise Unauthenticated(detail)
        overrides = dict(store.load_overrides(role.id))
        return ActorSession(
            user_id=user.id,
            role_id=role.id,
            role_name=role.name,
            archetype=role.archetype,
            level=role.level,
            tenant_id=user.tenant_id,
            permissions=effective_permissions(role, overrides),
            system_root=system_root,
        )

    def sign_in(self, user_id: int) -> ActorSession:
        session = self.build(user_id)
        with self._lock:
            self._sessions[user_id] = session
        logger.info('Session built for user %s (role=%s level=%s)', user_id, session.role_id, session.level)
        return session

    def sign_out(self, user_id: int):
        """Tombstone the session: tokens issued earlier stop resolving until the next ``sign_in``."""
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = self._sessions[user_id] = ActorSession(
                    user_id=user_id, role_id=0, archetype='', level=0, tenant_id=None, permissions=(),
                )
            session.revoke(SIGNED_OUT)
        logger.info('User %s signed out', user_id)

    def get(self, user_id: int) -> Optional[ActorSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def current(self, user_id: int) -> ActorSession:
        """Session usable for authorization right now.

        Missing sessions are built, stale ones rebuilt synchronously, revoked
        ones raise ``Unauthenticated`` until the user signs in again.
        """
        with self._lock:
            session = self._sessions.get(user_id)
            if session is not None and session.status == REVOKED:
                raise Unauthenticated(session.revoked_reason or 'Session revoked; sign in again')
            if session is not None and session.status == ACTIVE:
                return session
        try:
            fresh = self.build(user_id)
        except Unauthenticated as e:
            self._revoke_users([user_id], e.description)
            raise
        with self._lock:
            latest = self._sessions.get(user_id)
            if latest is not None and latest.status == REVOKED:
                # Revoked while we were rebuilding; the revocation wins
                raise Unauthenticated(latest.revoked_reason or 'Session revoked; sign in again')
            self._sessions[user_id] = fresh
        if session is not None:
            logger.info('Rebuilt stale session for user %s', user_id)
        return fresh

    # ---- invalidation hooks ---- #
    def _matching(self, predicate) -> List[ActorSession]:
        with self._lock:
            return [s for s in self._sessions.values() if predicate(s)]

    def _revoke_users(self, user_ids: Iterable[int], reason: str):
        ids = set(user_ids)
        with self._lock:
            for uid in ids:
                existing = self._sessions.get(uid)
                if existing is not None:
                    existing.revoke(reason)

    def role_changed(self, role_id: int):
        """Role attributes or overrides changed: holders rebuild before next use."""
        for s in self._matching(lambda s: s.role_id == role_id):
            s.invalidate()

    def role_deactivated(self, role_id: int):
        """Forced sign-out of every holder of ``role_id``."""
        sessions = self._matching(lambda s: s.role_id == role_id)
        for s in sessions:
            s.revoke('Assigned role was deactivated')
        if sessions:
            logger.warning('Revoked %d session(s) holding deactivated role %s', len(sessions), role_id)

    def user_changed(self, user_id: int):
        with self._lock:
            session = self._sessions.get(user_id)
        if session is not None:
            session.invalidate()

    def tenant_deactivated(self, tenant_id: int):
        sessions = self._matching(lambda s: s.tenant_id == tenant_id and not s.is_root)
        for s in sessions:
            s.revoke('Company has been deactivated')
        if sessions:
            logger.warning('Revoked %d session(s) of deactivated tenant %s', len(sessions), tenant_id)


def require_actor(actor: Optional[ActorSession]) -> ActorSession:
    """Gate for every mutation entry point."""
    if actor is None:
        raise Unauthenticated()
    actor.ensure_valid()
    return actor


__all__ = [
    'ActorSession', 'SessionManager', 'require_actor',
    'ACTIVE', 'STALE', 'REVOKED', 'STATE_ROOT', 'STATE_TENANT_ADMIN', 'STATE_TENANT_SCOPED',
]
