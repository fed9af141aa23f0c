import pytest

from washops.constants.permissions import ARCHETYPE_DEFAULTS, PERMISSION_KEYS
from washops.errors import StaleSession, Unauthenticated
from washops.services.session import (
    ACTIVE, REVOKED, STALE, STATE_ROOT, STATE_TENANT_ADMIN, STATE_TENANT_SCOPED, ActorSession, require_actor,
)
from washops.services.tenants import set_tenant_active


def test_sign_in_resolves_defaults(cashier_actor, cashier_user, tenant):
    assert cashier_actor.user_id == cashier_user.id
    assert cashier_actor.tenant_id == tenant.id
    assert cashier_actor.permissions == ARCHETYPE_DEFAULTS['cashier']
    assert cashier_actor.has('cash.open_close') is True
    assert cashier_actor.has('users.manage') is False
    assert cashier_actor.has_any(['users.manage', 'customers.view']) is True
    assert cashier_actor.has_all(['users.manage', 'customers.view']) is False


def test_actor_states(root_actor, admin_actor, cashier_actor):
    assert root_actor.actor_state == STATE_ROOT
    assert root_actor.permissions == PERMISSION_KEYS
    assert admin_actor.actor_state == STATE_TENANT_ADMIN
    assert cashier_actor.actor_state == STATE_TENANT_SCOPED
    assert cashier_actor.to_dict()['state'] == STATE_TENANT_SCOPED


def test_admin_without_manage_is_scoped(overrides, root_actor, admin_actor, sessions, system_roles):
    overrides.apply_changes(root_actor, system_roles['admin'].id, {'users.manage': False})
    assert sessions.current(admin_actor.user_id).actor_state == STATE_TENANT_SCOPED


def test_role_deactivation_revokes_immediately(registry, root_actor, sessions, cashier_actor, cashier_user, system_roles):
    registry.set_active(root_actor, system_roles['cashier'].id, False)
    # The cached session stops authorizing before any rebuild
    assert cashier_actor.status == REVOKED
    assert cashier_actor.has('customers.view') is False
    with pytest.raises(Unauthenticated):
        sessions.current(cashier_user.id)
    with pytest.raises(Unauthenticated):
        require_actor(cashier_actor)


def test_sign_in_blocked_for_inactive_role(registry, root_actor, sessions, cashier_user, system_roles):
    registry.set_active(root_actor, system_roles['cashier'].id, False)
    with pytest.raises(Unauthenticated):
        sessions.sign_in(cashier_user.id)
    registry.set_active(root_actor, system_roles['cashier'].id, True)
    assert sessions.sign_in(cashier_user.id).is_valid


def test_inactive_user_cannot_sign_in(sessions, make_user, system_roles, tenant):
    user = make_user('gone@acme.test', system_roles['operator'], tenant, active=False)
    with pytest.raises(Unauthenticated):
        sessions.sign_in(user.id)
    with pytest.raises(Unauthenticated):
        sessions.sign_in(987654)


def test_stale_session_rebuilds_on_current(sessions, cashier_actor, cashier_user, system_roles):
    sessions.role_changed(system_roles['cashier'].id)
    assert cashier_actor.status == STALE
    assert cashier_actor.has('customers.view') is False
    with pytest.raises(StaleSession):
        cashier_actor.ensure_valid()
    fresh = sessions.current(cashier_user.id)
    assert fresh.status == ACTIVE
    assert sessions.get(cashier_user.id) is fresh


def test_tenant_deactivation_signs_out_members(store, sessions, root_actor, admin_actor, cashier_actor, cashier_user, tenant):
    set_tenant_active(store, sessions, root_actor, tenant.id, False, reason='Unpaid invoice')
    assert admin_actor.status == REVOKED
    assert cashier_actor.status == REVOKED
    assert root_actor.is_valid
    with pytest.raises(Unauthenticated) as exc:
        sessions.sign_in(cashier_user.id)
    assert 'Unpaid invoice' in exc.value.description
    set_tenant_active(store, sessions, root_actor, tenant.id, True)
    assert sessions.sign_in(cashier_user.id).is_valid


def test_revocation_is_sticky_until_sign_in(sessions, cashier_actor, cashier_user, system_roles):
    sessions.role_deactivated(system_roles['cashier'].id)
    sessions.role_changed(system_roles['cashier'].id)
    assert cashier_actor.status == REVOKED
    with pytest.raises(Unauthenticated):
        sessions.current(cashier_user.id)
    assert sessions.sign_in(cashier_user.id).is_valid


def test_sign_out_blocks_until_next_sign_in(sessions, cashier_actor, cashier_user, make_user, system_roles, tenant):
    sessions.sign_out(cashier_user.id)
    assert cashier_actor.status == REVOKED
    with pytest.raises(Unauthenticated):
        sessions.current(cashier_user.id)
    assert sessions.sign_in(cashier_user.id).has('cash.open_close') is True
    assert sessions.current(cashier_user.id).is_valid

    # No cached session yet: signing out still leaves a tombstone
    other = make_user('late@acme.test', system_roles['operator'], tenant)
    sessions.sign_out(other.id)
    with pytest.raises(Unauthenticated):
        sessions.current(other.id)


def test_root_archetype_on_tenant_role_is_not_root(db, sessions, make_role, make_user, tenant):
    boss = make_role('Boss', 95, archetype='root', tenant=tenant)
    user = make_user('boss@acme.test', boss, tenant)
    actor = sessions.sign_in(user.id)
    assert actor.is_root is False
    assert actor.actor_state == STATE_TENANT_SCOPED
    assert actor.can_manage_roles is False

    # Tenant deactivation still applies to it
    tenant.is_active = False
    db.commit()
    with pytest.raises(Unauthenticated):
        sessions.sign_in(user.id)


def test_require_actor_without_session():
    with pytest.raises(Unauthenticated):
        require_actor(None)
    actor = ActorSession(user_id=1, role_id=1, archetype='cashier', level=50, tenant_id=1, permissions=['cash.view'])
    assert require_actor(actor) is actor
