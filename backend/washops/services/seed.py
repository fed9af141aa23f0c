"""Idempotent seeding of the permission table, global system roles and the root user."""
from __future__ import annotations
import logging
import os
from typing import Dict, List, Tuple
from sqlalchemy import select
from sqlalchemy.orm import Session

from washops.constants.permissions import (
    ARCHETYPES, ARCHETYPE_DESCRIPTIONS, ARCHETYPE_LEVELS, ROOT, PERMISSION_KEYS, MODULE_ACTIONS,
    ARCHETYPE_DEFAULTS, list_permissions,
)
from washops.models.authz import Permission, Role, RolePermission, User
from washops.services.store import AuthzStore

logger = logging.getLogger(__name__)


def ensure_permissions(session: Session) -> int:
    existing = {p.code for p in session.execute(select(Permission)).scalars().all()}
    created = 0
    for p in list_permissions():
        if p.key not in existing:
            session.add(Permission(code=p.key, module=p.module, action=p.action, description=p.description))
            created += 1
    session.flush()
    return created


def ensure_system_roles(session: Session) -> int:
    """One global role per archetype. Existing rows keep their level and active flag."""
    existing = {r.name: r for r in AuthzStore(session).load_roles_by_tenant(None)}
    created = 0
    for archetype in ARCHETYPES:
        role = existing.get(archetype)
        if role is None:
            session.add(Role(
                tenant_id=None,
                name=archetype,
                description=ARCHETYPE_DESCRIPTIONS[archetype],
                archetype=archetype,
                level=ARCHETYPE_LEVELS[archetype],
                is_system_role=True,
                is_active=True,
            ))
            created += 1
        elif not role.is_system_role or role.archetype != archetype:
            logger.warning('Global role %r exists but is not the %s system role', role.name, archetype)
    session.flush()
    return created


def ensure_root_user(session: Session, email: str = None, password: str = None) -> bool:
    root_role = session.execute(
        select(Role).where(Role.tenant_id.is_(None), Role.name == ROOT)
    ).scalar_one_or_none()
    if root_role is None:
        logger.warning('Root role missing; skipping root user creation')
        return False
    email = email or os.getenv('SEED_ROOT_EMAIL', 'root@example.com')
    if session.execute(select(User).where(User.email == email)).scalar_one_or_none():
        return False
    user = User(name='Root', email=email, tenant_id=None, role_id=root_role.id, password_hash='')
    user.set_password(password or os.getenv('SEED_ROOT_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    session.flush()
    logger.info('Created root user %s with temporary password', email)
    return True


def seed_all(session: Session) -> Tuple[int, int]:
    created_p = ensure_permissions(session)
    created_r = ensure_system_roles(session)
    return created_p, created_r


def validate_seed(session: Session) -> List[str]:
    """Problems between the persisted tables and the in-code catalog."""
    problems: List[str] = []
    for code, module, action in session.execute(select(Permission.code, Permission.module, Permission.action)):
        if code not in PERMISSION_KEYS:
            problems.append(f'Permission row not in catalog: {code}')
        elif action not in MODULE_ACTIONS.get(module, []):
            problems.append(f'Permission row {code} has mismatched module/action {module}/{action}')
    persisted = set(session.execute(select(Permission.code)).scalars())
    for key in sorted(PERMISSION_KEYS - persisted):
        problems.append(f'Catalog permission not seeded: {key}')
    for role in session.execute(select(Role)).scalars():
        if role.archetype not in ARCHETYPE_DEFAULTS:
            problems.append(f"Role '{role.name}' has unknown archetype '{role.archetype}'")
    dangling = session.execute(
        select(RolePermission.id).where(RolePermission.permission_id.not_in(select(Permission.id)))
    ).first()
    if dangling:
        problems.append('Override rows reference missing permissions')
    return problems


def role_summary(session: Session) -> Dict[str, Dict[str, object]]:
    out: Dict[str, Dict[str, object]] = {}
    for role in session.execute(select(Role).order_by(Role.level.desc(), Role.name.asc())).scalars():
        label = role.name if role.tenant_id is None else f'{role.name}@{role.tenant_id}'
        overrides = {rp.permission.code: rp.granted for rp in role.overrides}
        out[label] = {
            'level': role.level,
            'archetype': role.archetype,
            'active': role.is_active,
            'defaults': len(ARCHETYPE_DEFAULTS.get(role.archetype, ())),
            'overrides': overrides,
        }
    return out
