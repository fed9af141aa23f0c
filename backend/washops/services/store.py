"""SQLAlchemy-backed persistence for roles, overrides, users and tenants.

The services never touch the ORM session directly for reads or writes of these
tables; they go through ``AuthzStore`` so the transaction boundary lives in one
place (``transaction()``).
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from sqlalchemy import select, delete, func, or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from washops.errors import ConcurrentModification, NotFound
from washops.models.authz import Permission, Role, RolePermission, Tenant, User

logger = logging.getLogger(__name__)


class AuthzStore:
    def __init__(self, session: Session):
        self.session = session

    # ---- transaction ---- #
    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll everything back on any error and re-raise."""
        try:
            yield self.session
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning('Concurrent role modification detected: %s', e)
            raise ConcurrentModification() from e
        except Exception:
            self.session.rollback()
            raise

    # ---- roles ---- #
    def load_role(self, role_id: int) -> Role:
        role = self.session.get(Role, role_id)
        if role is None:
            raise NotFound(f'Role {role_id} not found')
        return role

    def find_role(self, role_id: int, fresh: bool = False) -> Optional[Role]:
        # fresh=True bypasses the identity map so session builds never see a cached row
        return self.session.get(Role, role_id, populate_existing=fresh)

    def load_roles_by_tenant(self, tenant_id: Optional[int]) -> List[Role]:
        """Roles owned by ``tenant_id`` (``None`` = global roles only)."""
        if tenant_id is None:
            q = select(Role).where(Role.tenant_id.is_(None))
        else:
            q = select(Role).where(Role.tenant_id == tenant_id)
        return list(self.session.execute(q.order_by(Role.level.desc(), Role.name.asc())).scalars())

    def query_roles(self, tenant_id: Optional[int] = None, all_tenants: bool = False,
                    below_level: Optional[int] = None, active_only: bool = False) -> List[Role]:
        """Single ordered query backing every role listing.

        ``all_tenants`` returns every role in the system; otherwise global roles
        plus those of ``tenant_id``. ``below_level`` applies the level ceiling.
        """
        q = select(Role)
        if not all_tenants:
            scope = Role.tenant_id.is_(None)
            if tenant_id is not None:
                scope = or_(scope, Role.tenant_id == tenant_id)
            q = q.where(scope)
        if below_level is not None:
            q = q.where(Role.level < below_level)
        if active_only:
            q = q.where(Role.is_active.is_(True))
        q = q.order_by(Role.level.desc(), Role.name.asc())
        return list(self.session.execute(q).scalars())

    def role_name_taken(self, tenant_id: Optional[int], name: str, exclude_id: Optional[int] = None) -> bool:
        q = select(Role.id).where(Role.name == name)
        q = q.where(Role.tenant_id.is_(None) if tenant_id is None else Role.tenant_id == tenant_id)
        if exclude_id is not None:
            q = q.where(Role.id != exclude_id)
        return self.session.execute(q).first() is not None

    def save_role(self, role: Role) -> Role:
        self.session.add(role)
        self.session.flush()
        return role

    def delete_role(self, role: Role):
        """Delete a role and its override rows."""
        self.session.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
        self.session.delete(role)
        self.session.flush()

    def touch_role(self, role: Role):
        """Bump the role version so concurrent writers on the same role conflict."""
        role.updated_at = datetime.now(timezone.utc)
        self.session.flush()

    def count_role_users(self, role_id: int) -> int:
        return self.session.execute(select(func.count(User.id)).where(User.role_id == role_id)).scalar_one()

    # ---- permissions & overrides ---- #
    def permission_ids(self, codes: Sequence[str]) -> Dict[str, int]:
        if not codes:
            return {}
        rows = self.session.execute(select(Permission.code, Permission.id).where(Permission.code.in_(list(codes))))
        return {code: pid for code, pid in rows}

    def load_overrides(self, role_id: int) -> List[Tuple[str, bool]]:
        rows = self.session.execute(
            select(Permission.code, RolePermission.granted)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.code.asc())
        )
        return [(code, bool(granted)) for code, granted in rows]

    def upsert_override(self, role_id: int, permission_id: int, granted: bool):
        row = self.session.execute(
            select(RolePermission).where(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
        ).scalar_one_or_none()
        if row is None:
            self.session.add(RolePermission(role_id=role_id, permission_id=permission_id, granted=granted))
        else:
            row.granted = granted
        self.session.flush()

    def delete_override(self, role_id: int, permission_id: int):
        self.session.execute(
            delete(RolePermission).where(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
        )

    # ---- users & tenants ---- #
    def load_user(self, user_id: int, fresh: bool = False) -> User:
        user = self.session.get(User, user_id, populate_existing=fresh)
        if user is None:
            raise NotFound(f'User {user_id} not found')
        return user

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.session.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def load_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFound(f'Tenant {tenant_id} not found')
        return tenant

    def find_tenant(self, tenant_id: Optional[int], fresh: bool = False) -> Optional[Tenant]:
        if tenant_id is None:
            return None
        return self.session.get(Tenant, tenant_id, populate_existing=fresh)
