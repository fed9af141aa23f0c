from flask import Blueprint, current_app, g, request
from flask_jwt_extended import create_access_token
from sqlalchemy import select, func

from washops import get_db
from washops.config.pagination import parse_pagination
from washops.constants.permissions import ARCHETYPE_LABELS, MODULE_LABELS, default_map, permissions_by_module
from washops.decorators.auth import require_actor, require_permissions
from washops.errors import PermissionDenied, Unauthenticated, ValidationError
from washops.models.audit import AuditLog
from washops.services.engine import effective_permissions
from washops.services.overrides import OverrideStore
from washops.services.policy import session_manager
from washops.services.roles import RoleRegistry, role_to_dict
from washops.services.session import STATE_ROOT, STATE_TENANT_ADMIN
from washops.services.store import AuthzStore
from washops.services.tenants import set_tenant_active

iam_bp = Blueprint('iam', __name__)


def _store() -> AuthzStore:
    return AuthzStore(get_db())


def _registry(store: AuthzStore) -> RoleRegistry:
    return RoleRegistry(store, session_manager(), current_app.extensions['washops.role_locks'])


def _overrides(store: AuthzStore) -> OverrideStore:
    return OverrideStore(store, session_manager(), current_app.extensions['washops.role_locks'])


def _json() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('JSON object expected')
    return data


def _page(rows):
    limit, offset = parse_pagination(request.args)
    window = rows[offset:offset + limit]
    return window, {'total': len(rows), 'limit': limit, 'offset': offset, 'returned': len(window)}


# ---- auth ---- #
@iam_bp.post('/auth/login')
def login():
    data = _json()
    email, password = data.get('email'), data.get('password')
    if not email or not password:
        raise ValidationError('email and password required')
    user = _store().find_user_by_email(email)
    if not user or not user.verify_password(password):
        raise Unauthenticated('Invalid credentials')
    # Deactivation checks finish here, before any token exists
    session = session_manager().sign_in(user.id)
    token = create_access_token(identity=str(user.id))
    return {'access_token': token, 'session': session.to_dict()}


@iam_bp.post('/auth/logout')
@require_actor
def logout():
    session_manager().sign_out(g.actor.user_id)
    return {'status': 'signed_out'}


@iam_bp.get('/auth/me')
@require_actor
def me():
    return g.actor.to_dict()


# ---- catalog ---- #
@iam_bp.get('/permissions')
@require_permissions('users.manage')
def list_permissions():
    modules = []
    for module, perms in permissions_by_module().items():
        modules.append({
            'module': module,
            'label': MODULE_LABELS.get(module, module),
            'permissions': [
                {'key': p.key, 'action': p.action, 'description': p.description, 'defaults': default_map(p.key)}
                for p in perms
            ],
        })
    return {'data': modules, 'archetypes': ARCHETYPE_LABELS}


# ---- roles ---- #
@iam_bp.get('/roles')
@require_actor
def list_roles():
    registry = _registry(_store())
    if request.args.get('assignable') in ('1', 'true'):
        rows = registry.list_assignable_roles(g.actor)
    else:
        rows = registry.list_visible_roles(g.actor)
    window, pagination = _page(rows)
    return {'data': [role_to_dict(r) for r in window], 'pagination': pagination}


@iam_bp.post('/roles')
@require_actor
def create_role():
    role = _registry(_store()).create_role(g.actor, _json())
    return role_to_dict(role), 201


@iam_bp.get('/roles/<int:role_id>')
@require_actor
def get_role(role_id: int):
    return role_to_dict(_registry(_store()).get_role(g.actor, role_id))


@iam_bp.patch('/roles/<int:role_id>')
@require_actor
def update_role(role_id: int):
    return role_to_dict(_registry(_store()).update_role(g.actor, role_id, _json()))


@iam_bp.delete('/roles/<int:role_id>')
@require_actor
def delete_role(role_id: int):
    _registry(_store()).delete_role(g.actor, role_id)
    return {'id': role_id, 'deleted': True}


@iam_bp.put('/roles/<int:role_id>/active')
@require_actor
def set_role_active(role_id: int):
    data = _json()
    if 'active' not in data:
        raise ValidationError('active required')
    return role_to_dict(_registry(_store()).set_active(g.actor, role_id, data['active']))


@iam_bp.get('/roles/<int:role_id>/permissions')
@require_actor
def get_role_permissions(role_id: int):
    store = _store()
    role = _registry(store).get_role(g.actor, role_id)
    overrides = _overrides(store).get_overrides(role.id)
    return {'id': role.id, 'overrides': overrides, 'effective': sorted(effective_permissions(role, overrides))}


@iam_bp.patch('/roles/<int:role_id>/permissions')
@require_actor
def apply_role_permissions(role_id: int):
    changes = _json().get('changes')
    if changes is None:
        raise ValidationError('changes required')
    store = _store()
    # Read before the batch; a committed write never answers 404
    role = store.find_role(role_id)
    overrides = _overrides(store).apply_changes(g.actor, role_id, changes)
    return {'id': role_id, 'overrides': overrides, 'effective': sorted(effective_permissions(role, overrides))}


# ---- users & tenants ---- #
@iam_bp.put('/users/<int:user_id>/role')
@require_actor
def assign_user_role(user_id: int):
    role_id = _json().get('role_id')
    if isinstance(role_id, bool) or not isinstance(role_id, int):
        raise ValidationError('role_id required')
    user = _registry(_store()).assign_role(g.actor, user_id, role_id)
    return {'user_id': user.id, 'role_id': user.role_id}


@iam_bp.put('/tenants/<int:tenant_id>/active')
@require_actor
def set_company_active(tenant_id: int):
    data = _json()
    active = data.get('active')
    if not isinstance(active, bool):
        raise ValidationError('active must be a boolean')
    tenant = set_tenant_active(_store(), session_manager(), g.actor, tenant_id, active, data.get('reason'))
    return {'id': tenant.id, 'is_active': tenant.is_active, 'deactivation_reason': tenant.deactivation_reason}


# ---- audit ---- #
@iam_bp.get('/audit/logs')
@require_actor
def list_audit_logs():
    actor = g.actor
    if actor.actor_state not in (STATE_ROOT, STATE_TENANT_ADMIN):
        raise PermissionDenied('Role management rights required')
    limit, offset = parse_pagination(request.args)
    session = get_db()
    q = select(AuditLog)
    if actor.actor_state != STATE_ROOT:
        q = q.where(AuditLog.tenant_id == actor.tenant_id)
    action = request.args.get('action')
    if action:
        q = q.where(AuditLog.action == action)
    total = session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = session.execute(q.order_by(AuditLog.id.desc()).offset(offset).limit(limit)).scalars().all()
    return {
        'data': [
            {
                'id': r.id, 'actor_user_id': r.actor_user_id, 'tenant_id': r.tenant_id, 'action': r.action,
                'entity': r.entity, 'entity_id': r.entity_id, 'meta': r.meta,
                'created_at': r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ],
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)},
    }
