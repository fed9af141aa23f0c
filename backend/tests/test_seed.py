import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from washops.constants.permissions import ARCHETYPES, ARCHETYPE_LEVELS, PERMISSION_KEYS
from washops.errors import NotFound
from washops.models.authz import Permission, Role
from washops.services.seed import ensure_root_user, role_summary, seed_all, validate_seed


def test_seed_creates_catalog_and_system_roles(db, system_roles):
    codes = set(db.execute(select(Permission.code)).scalars())
    assert codes == PERMISSION_KEYS
    assert set(system_roles) == set(ARCHETYPES)
    for name, role in system_roles.items():
        assert role.is_system_role and role.archetype == name
        assert role.level == ARCHETYPE_LEVELS[name]


def test_seed_is_idempotent(db):
    assert seed_all(db) == (0, 0)
    assert ensure_root_user(db, email='root@test.local', password='pw') is False
    db.commit()
    assert db.execute(select(func.count(Role.id))).scalar_one() == len(ARCHETYPES)


def test_validate_seed_reports_drift(db):
    assert validate_seed(db) == []
    db.add(Permission(code='cash.teleport', module='cash', action='teleport', description='nope'))
    db.flush()
    problems = validate_seed(db)
    assert problems == ['Permission row not in catalog: cash.teleport']
    db.rollback()


def test_global_role_names_are_unique(db):
    db.add(Role(name='cashier', level=10, archetype='cashier', tenant_id=None, is_system_role=False))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_role_summary_labels_tenant_roles(db, make_role, tenant):
    make_role('Washer', 20, archetype='operator', tenant=tenant)
    summary = role_summary(db)
    assert summary['root']['level'] == 100
    assert summary[f'Washer@{tenant.id}'] == {
        'level': 20, 'archetype': 'operator', 'active': True, 'defaults': 7, 'overrides': {},
    }


def test_store_loads_roles_per_owner(store, make_role, make_tenant, tenant):
    make_role('Washer', 20, archetype='operator', tenant=tenant)
    make_role('Elsewhere', 20, archetype='operator', tenant=make_tenant('Other'))
    assert [r.name for r in store.load_roles_by_tenant(tenant.id)] == ['Washer']
    globals_ = store.load_roles_by_tenant(None)
    assert [r.level for r in globals_] == sorted(ARCHETYPE_LEVELS.values(), reverse=True)
    with pytest.raises(NotFound):
        store.load_role(123456)
