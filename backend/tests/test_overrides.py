import pytest
from sqlalchemy import select

from washops.errors import NotFound, PermissionDenied, ValidationError
from washops.models.audit import AuditLog
from washops.models.authz import RolePermission


@pytest.fixture()
def washer(registry, admin_actor):
    return registry.create_role(admin_actor, {'name': 'Washer', 'level': 20, 'archetype': 'operator'})


def test_apply_upserts_and_deletes(overrides, admin_actor, washer):
    result = overrides.apply_changes(admin_actor, washer.id, {'orders.create': False, 'reports.view': True})
    assert result == {'orders.create': False, 'reports.view': True}
    result = overrides.apply_changes(admin_actor, washer.id, {'orders.create': None, 'reports.view': False})
    assert result == {'reports.view': False}
    assert overrides.get_overrides(washer.id) == {'reports.view': False}


def test_false_row_differs_from_missing_row(overrides, sessions, admin_actor, washer, make_user, tenant):
    user = make_user('w@acme.test', washer, tenant)
    overrides.apply_changes(admin_actor, washer.id, {'orders.create': False})
    assert sessions.current(user.id).has('orders.create') is False
    overrides.apply_changes(admin_actor, washer.id, {'orders.create': None})
    # Row gone: archetype default grants it again
    assert sessions.current(user.id).has('orders.create') is True


def test_batch_is_atomic(overrides, store, root_actor, system_roles, monkeypatch):
    cashier = system_roles['cashier']
    overrides.apply_changes(root_actor, cashier.id, {'dashboard.view': False})

    original = store.upsert_override
    calls = {'n': 0}

    def flaky(role_id, permission_id, granted):
        calls['n'] += 1
        if calls['n'] == 3:
            raise RuntimeError('disk full')
        return original(role_id, permission_id, granted)

    monkeypatch.setattr(store, 'upsert_override', flaky)
    with pytest.raises(RuntimeError):
        overrides.apply_changes(root_actor, cashier.id, {'cash.view': True, 'customers.view': False, 'orders.view': True})
    assert overrides.get_overrides(cashier.id) == {'dashboard.view': False}


def test_unknown_key_rejects_whole_batch(overrides, admin_actor, washer):
    with pytest.raises(NotFound):
        overrides.apply_changes(admin_actor, washer.id, {'orders.create': False, 'cash.teleport': True})
    assert overrides.get_overrides(washer.id) == {}


@pytest.mark.parametrize('changes', [{'orders.create': 'yes'}, {'orders.create': 1}, ['orders.create']])
def test_bad_values_are_validation_errors(overrides, admin_actor, washer, changes):
    with pytest.raises(ValidationError):
        overrides.apply_changes(admin_actor, washer.id, changes)


def test_admin_cannot_grant_what_it_lacks(overrides, admin_actor, washer):
    with pytest.raises(PermissionDenied):
        overrides.apply_changes(admin_actor, washer.id, {'cash.open_close': True})
    # Revoking is always allowed
    assert overrides.apply_changes(admin_actor, washer.id, {'cash.open_close': False}) == {'cash.open_close': False}


def test_admin_cannot_touch_global_or_foreign_roles(overrides, admin_actor, system_roles, make_tenant, make_role):
    with pytest.raises(PermissionDenied):
        overrides.apply_changes(admin_actor, system_roles['cashier'].id, {'cash.open_close': False})
    foreign = make_role('Foreign', 10, tenant=make_tenant('Other'))
    with pytest.raises(NotFound):
        overrides.apply_changes(admin_actor, foreign.id, {'orders.view': False})


def test_root_revokes_open_close_for_cashier(overrides, root_actor, cashier_actor, sessions, cashier_user, system_roles, db):
    assert cashier_actor.has('cash.open_close') is True
    overrides.apply_changes(root_actor, system_roles['cashier'].id, {'cash.open_close': False})
    assert cashier_actor.has('cash.open_close') is False
    rebuilt = sessions.current(cashier_user.id)
    assert rebuilt is not cashier_actor
    assert rebuilt.has('cash.open_close') is False
    assert rebuilt.has('customers.view') is True
    rows = db.execute(select(RolePermission).where(RolePermission.role_id == system_roles['cashier'].id)).scalars().all()
    assert [(r.permission.code, r.granted) for r in rows] == [('cash.open_close', False)]


def test_apply_bumps_version_and_audits(overrides, admin_actor, washer, db):
    before = washer.version
    overrides.apply_changes(admin_actor, washer.id, {'orders.create': False})
    db.refresh(washer)
    assert washer.version > before
    log = db.execute(select(AuditLog).where(AuditLog.action == 'ROLE.PERM.APPLY')).scalars().one()
    assert log.entity_id == str(washer.id)
    assert log.meta == {'changes': {'orders.create': False}}
