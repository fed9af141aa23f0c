"""Role registry: visibility, CRUD, activation and assignment of roles.

Every mutation path runs the same guards, in order:
  1. actor present, session valid, role-management rights  (Unauthenticated / StaleSession / PermissionDenied)
  2. target inside the actor's tenant scope                 (NotFound)
  3. system-role identity untouched                         (Immutable)
  4. ownership + level ceiling on the current role level    (PermissionDenied)
  5. new level inside the actor's range                     (InvalidLevel)
Steps 2 to 5 run under the per-role lock against a freshly reloaded row.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Mapping, Optional

from washops.constants.permissions import ARCHETYPES, ROOT, is_archetype
from washops.errors import Conflict, Immutable, NotFound, PermissionDenied, ValidationError
from washops.models.authz import Role, User
from washops.services.audit import add_audit
from washops.services.policy import (
    assert_archetype_allowed, assert_can_manage_roles, assert_level_allowed, assert_manages_role,
    assert_role_visible, below_ceiling, in_tenant_scope,
)
from washops.services.session import ActorSession, SessionManager, STATE_ROOT, STATE_TENANT_ADMIN, require_actor
from washops.services.store import AuthzStore
from washops.utils.locks import RoleLocks

logger = logging.getLogger(__name__)

CREATE_FIELDS = {'name', 'description', 'level', 'archetype', 'tenant_id'}
UPDATE_FIELDS = {'name', 'description', 'level', 'archetype', 'is_system_role', 'tenant_id'}


def role_to_dict(role: Role) -> Dict[str, Any]:
    return {
        'id': role.id,
        'tenant_id': role.tenant_id,
        'name': role.name,
        'description': role.description,
        'archetype': role.archetype,
        'level': role.level,
        'is_system_role': role.is_system_role,
        'is_active': role.is_active,
    }


def _clean_name(raw) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError('name required')
    return raw.strip()


class RoleRegistry:
    def __init__(self, store: AuthzStore, sessions: Optional[SessionManager] = None,
                 locks: Optional[RoleLocks] = None):
        self.store = store
        self.sessions = sessions
        self.locks = locks or RoleLocks()

    # ---- reads ---- #
    def list_visible_roles(self, actor: Optional[ActorSession], active_only: bool = False) -> List[Role]:
        actor = require_actor(actor)
        state = actor.actor_state
        if state == STATE_ROOT:
            return self.store.query_roles(all_tenants=True, active_only=active_only)
        if state == STATE_TENANT_ADMIN:
            return self.store.query_roles(tenant_id=actor.tenant_id, below_level=actor.level, active_only=active_only)
        raise PermissionDenied('Role management rights required')

    def list_assignable_roles(self, actor: Optional[ActorSession]) -> List[Role]:
        return self.list_visible_roles(actor, active_only=True)

    def get_role(self, actor: Optional[ActorSession], role_id: int) -> Role:
        actor = assert_can_manage_roles(actor)
        role = assert_role_visible(actor, self.store.find_role(role_id))
        if not below_ceiling(actor, role.level):
            # Listings hide these too
            raise NotFound('Role not found')
        return role

    # ---- mutations ---- #
    def create_role(self, actor: Optional[ActorSession], data: Mapping[str, Any]) -> Role:
        actor = assert_can_manage_roles(actor)
        unknown = set(data) - CREATE_FIELDS
        if unknown:
            raise ValidationError(f'Unknown fields: {sorted(unknown)}')
        name = _clean_name(data.get('name'))
        level = assert_level_allowed(actor, data.get('level'))
        archetype = data.get('archetype')
        if not isinstance(archetype, str) or not is_archetype(archetype):
            raise ValidationError(f'archetype must be one of {list(ARCHETYPES)}')
        assert_archetype_allowed(actor, archetype)

        tenant_id = self._target_tenant(actor, data)
        if tenant_id is None and name in ARCHETYPES:
            raise Conflict(f"'{name}' is reserved for the system role")
        if self.store.role_name_taken(tenant_id, name):
            raise Conflict('role exists')

        with self.store.transaction() as session:
            role = Role(
                tenant_id=tenant_id,
                name=name,
                description=data.get('description'),
                archetype=archetype,
                level=level,
                is_system_role=False,
                is_active=True,
            )
            self.store.save_role(role)
            add_audit(session, actor, 'ROLE.CREATE', 'Role', role.id,
                      {'name': name, 'level': level, 'archetype': archetype}, tenant_id=tenant_id)
        logger.info('User %s created role %s (%s, level=%s, tenant=%s)', actor.user_id, role.id, name, level, tenant_id)
        return role

    def update_role(self, actor: Optional[ActorSession], role_id: int, patch: Mapping[str, Any]) -> Role:
        actor = assert_can_manage_roles(actor)
        unknown = set(patch) - UPDATE_FIELDS
        if unknown:
            raise ValidationError(f'Unknown fields: {sorted(unknown)}')
        role = assert_role_visible(actor, self.store.find_role(role_id))
        with self.locks.hold(role.tenant_id, role.id):
            self.store.session.refresh(role)
            self._assert_identity_unchanged(role, patch)
            assert_manages_role(actor, role)

            changes: Dict[str, Dict[str, Any]] = {}
            if 'level' in patch:
                level = assert_level_allowed(actor, patch['level'])
                if role.is_system_role and role.archetype == ROOT and level != role.level:
                    raise Immutable('The root role level cannot change')
                changes['level'] = {'before': role.level, 'after': level}
            if 'name' in patch and not role.is_system_role:
                name = _clean_name(patch['name'])
                if name != role.name:
                    if role.tenant_id is None and name in ARCHETYPES:
                        raise Conflict(f"'{name}' is reserved for the system role")
                    if self.store.role_name_taken(role.tenant_id, name, exclude_id=role.id):
                        raise Conflict('role exists')
                    changes['name'] = {'before': role.name, 'after': name}
            if 'archetype' in patch and not role.is_system_role:
                archetype = patch['archetype']
                if not isinstance(archetype, str) or not is_archetype(archetype):
                    raise ValidationError(f'archetype must be one of {list(ARCHETYPES)}')
                assert_archetype_allowed(actor, archetype)
                if archetype != role.archetype:
                    changes['archetype'] = {'before': role.archetype, 'after': archetype}
            if 'description' in patch and patch['description'] != role.description:
                changes['description'] = {'before': role.description, 'after': patch['description']}

            if not changes:
                return role
            self._invalidate_holders(role.id)
            with self.store.transaction() as session:
                for field, diff in changes.items():
                    setattr(role, field, diff['after'])
                self.store.save_role(role)
                add_audit(session, actor, 'ROLE.UPDATE', 'Role', role.id, {'changes': changes}, tenant_id=role.tenant_id)
            self._invalidate_holders(role.id)
        logger.info('User %s updated role %s: %s', actor.user_id, role.id, sorted(changes))
        return role

    def delete_role(self, actor: Optional[ActorSession], role_id: int):
        actor = assert_can_manage_roles(actor)
        role = assert_role_visible(actor, self.store.find_role(role_id))
        tenant_id = role.tenant_id
        with self.locks.hold(tenant_id, role_id):
            self.store.session.refresh(role)
            if role.is_system_role:
                raise Immutable('System roles cannot be deleted')
            assert_manages_role(actor, role)
            holders = self.store.count_role_users(role.id)
            if holders:
                raise Conflict(f'Role is assigned to {holders} user(s)')
            meta = {'name': role.name, 'level': role.level}
            with self.store.transaction() as session:
                self.store.delete_role(role)
                add_audit(session, actor, 'ROLE.DELETE', 'Role', role_id, meta, tenant_id=tenant_id)
        self.locks.discard(tenant_id, role_id)
        if self.sessions is not None:
            self.sessions.role_deactivated(role_id)
        logger.info('User %s deleted role %s', actor.user_id, role_id)

    def set_active(self, actor: Optional[ActorSession], role_id: int, active: bool) -> Role:
        actor = assert_can_manage_roles(actor)
        if not isinstance(active, bool):
            raise ValidationError('active must be a boolean')
        role = assert_role_visible(actor, self.store.find_role(role_id))
        with self.locks.hold(role.tenant_id, role.id):
            self.store.session.refresh(role)
            assert_manages_role(actor, role)
            if not active and role.id == actor.role_id:
                raise PermissionDenied('Cannot deactivate your own role')
            if role.is_active == active:
                return role
            if not active and self.sessions is not None:
                # Holders lose access before the write lands
                self.sessions.role_deactivated(role.id)
            with self.store.transaction() as session:
                role.is_active = active
                self.store.save_role(role)
                add_audit(session, actor, 'ROLE.ACTIVATE' if active else 'ROLE.DEACTIVATE', 'Role', role.id,
                          {'name': role.name}, tenant_id=role.tenant_id)
            if self.sessions is not None:
                if active:
                    self.sessions.role_changed(role.id)
                else:
                    self.sessions.role_deactivated(role.id)
        logger.info('User %s set role %s active=%s', actor.user_id, role.id, active)
        return role

    def assign_role(self, actor: Optional[ActorSession], user_id: int, role_id: int) -> User:
        actor = assert_can_manage_roles(actor)
        user = self.store.session.get(User, user_id)
        if user is None or not in_tenant_scope(actor, user.tenant_id) or (not actor.is_root and user.tenant_id is None):
            raise NotFound('User not found')
        if user.id == actor.user_id:
            raise PermissionDenied('Cannot change your own role')
        role = assert_role_visible(actor, self.store.find_role(role_id))
        if role.tenant_id is not None and role.tenant_id != user.tenant_id:
            raise NotFound('Role not found')
        with self.locks.hold(role.tenant_id, role.id):
            self.store.session.refresh(role)
            if not role.is_active:
                raise ValidationError('Role is inactive')
            if not below_ceiling(actor, role.level):
                raise PermissionDenied('Cannot assign a role at or above your own level')
            current = self.store.find_role(user.role_id)
            if current is not None and not below_ceiling(actor, current.level):
                raise PermissionDenied('Cannot reassign a user at or above your own level')
            if user.role_id == role.id:
                return user
            before = user.role_id
            with self.store.transaction() as session:
                user.role_id = role.id
                add_audit(session, actor, 'USER.ROLE.SET', 'User', user.id,
                          {'before': before, 'after': role.id}, tenant_id=user.tenant_id)
        if self.sessions is not None:
            self.sessions.user_changed(user.id)
        logger.info('User %s assigned role %s to user %s', actor.user_id, role.id, user.id)
        return user

    # ---- helpers ---- #
    def _target_tenant(self, actor: ActorSession, data: Mapping[str, Any]) -> Optional[int]:
        requested = data.get('tenant_id', actor.tenant_id)
        if actor.is_root:
            if requested is not None:
                self.store.load_tenant(requested)
            return requested
        if requested != actor.tenant_id:
            raise NotFound('Tenant not found')
        return actor.tenant_id

    @staticmethod
    def _assert_identity_unchanged(role: Role, patch: Mapping[str, Any]):
        if 'is_system_role' in patch and patch['is_system_role'] != role.is_system_role:
            raise Immutable('is_system_role cannot change')
        if 'tenant_id' in patch and patch['tenant_id'] != role.tenant_id:
            raise Immutable('Roles cannot move between tenants')
        if role.is_system_role:
            if 'name' in patch and patch['name'] != role.name:
                raise Immutable('System role names cannot change')
            if 'archetype' in patch and patch['archetype'] != role.archetype:
                raise Immutable('System role archetypes cannot change')

    def _invalidate_holders(self, role_id: int):
        if self.sessions is not None:
            self.sessions.role_changed(role_id)
