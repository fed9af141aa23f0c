from __future__ import annotations
from typing import Optional, Tuple
from flask import current_app
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from washops.constants.permissions import MIN_LEVEL, MAX_LEVEL, ARCHETYPE_LEVELS, ROOT
from washops.errors import InvalidLevel, NotFound, PermissionDenied, Unauthenticated
from washops.models.authz import Role
from washops.services.session import ActorSession, SessionManager, require_actor

SESSIONS_EXTENSION = 'washops.sessions'


# ---- request context ---- #
def session_manager() -> SessionManager:
    return current_app.extensions[SESSIONS_EXTENSION]


def current_session() -> ActorSession:
    """Resolved session for the request's bearer token; ``Unauthenticated`` if none."""
    verify_jwt_in_request(optional=True)
    ident = get_jwt_identity()
    if ident is None:
        raise Unauthenticated()
    try:
        user_id = int(ident)
    except (TypeError, ValueError):
        raise Unauthenticated('Malformed token identity')
    return session_manager().current(user_id)


# ---- tenant scope & level ceiling ---- #
def in_tenant_scope(actor: ActorSession, tenant_id: Optional[int]) -> bool:
    """Global rows (``tenant_id is None``) and the actor's own tenant are in scope."""
    if actor.is_root:
        return True
    return tenant_id is None or tenant_id == actor.tenant_id


def below_ceiling(actor: ActorSession, level: int) -> bool:
    if actor.is_root:
        return True
    return level < actor.level


def allowed_level_range(actor: ActorSession) -> Tuple[int, int]:
    if actor.is_root:
        return MIN_LEVEL, MAX_LEVEL
    return MIN_LEVEL, actor.level - 1


def assert_level_allowed(actor: ActorSession, level) -> int:
    lo, hi = allowed_level_range(actor)
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidLevel(f'level must be an integer in [{lo}, {hi}]')
    if level < lo or level > hi:
        raise InvalidLevel(f'level {level} outside allowed range [{lo}, {hi}]')
    return level


def assert_archetype_allowed(actor: ActorSession, archetype: str):
    """A custom role may not inherit defaults of an archetype at or above the actor.

    The root archetype belongs to the global root system role alone, so even root
    cannot base a custom role on it.
    """
    if archetype == ROOT:
        raise PermissionDenied("The 'root' archetype is reserved for the system root role")
    if not below_ceiling(actor, ARCHETYPE_LEVELS[archetype]):
        raise PermissionDenied(f"Cannot base a role on archetype '{archetype}'")


def assert_can_manage_roles(actor: Optional[ActorSession]) -> ActorSession:
    actor = require_actor(actor)
    if not actor.can_manage_roles:
        raise PermissionDenied('Role management rights required')
    return actor


def assert_role_visible(actor: ActorSession, role: Optional[Role]) -> Role:
    if role is None or not in_tenant_scope(actor, role.tenant_id):
        # Same answer whether the role is missing or belongs to another tenant
        raise NotFound('Role not found')
    return role


def assert_manages_role(actor: ActorSession, role: Role):
    """Ownership plus level ceiling for any mutation touching ``role``."""
    if not actor.is_root and role.tenant_id != actor.tenant_id:
        raise PermissionDenied('Global roles can only be managed by root')
    if not below_ceiling(actor, role.level):
        raise PermissionDenied('Cannot manage a role at or above your own level')
