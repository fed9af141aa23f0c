from types import SimpleNamespace
import pytest

from washops.constants.permissions import ARCHETYPES, ARCHETYPE_DEFAULTS, list_permissions, archetype_default
from washops.services.engine import effective_permissions, resolve, resolve_all, resolve_any


def _role(archetype, active=True):
    return SimpleNamespace(archetype=archetype, is_active=active)


@pytest.mark.parametrize('archetype', ARCHETYPES)
def test_no_override_falls_back_to_archetype_default(archetype):
    role = _role(archetype)
    for p in list_permissions():
        assert resolve(p.key, role, {}) == archetype_default(archetype, p.key)
        assert resolve(p.key, role, None) == archetype_default(archetype, p.key)


@pytest.mark.parametrize('archetype', ARCHETYPES)
def test_override_row_always_wins(archetype):
    role = _role(archetype)
    for p in list_permissions():
        assert resolve(p.key, role, {p.key: True}) is True
        assert resolve(p.key, role, {p.key: False}) is False


def test_cashier_revoked_open_close():
    cashier = _role('cashier')
    assert resolve('cash.open_close', cashier, {}) is True
    assert resolve('cash.open_close', cashier, {'cash.open_close': False}) is False


def test_unknown_inactive_or_missing_role_denies():
    assert resolve('cash.open_close', None, {}) is False
    assert resolve('cash.open_close', _role('cashier', active=False), {'cash.open_close': True}) is False
    assert resolve('cash.open_close', _role('ghost'), {}) is False


def test_unknown_permission_denies_without_raising():
    root = _role('root')
    assert resolve('cash.teleport', root, {}) is False
    assert resolve('cash.teleport', root, {'cash.teleport': True}) is False
    assert resolve(None, root, {}) is False  # type: ignore[arg-type]


def test_empty_compositions_are_documented_boundaries():
    role = _role('root')
    # OR over nothing: nothing to show. AND over nothing: vacuously allowed.
    assert resolve_any([], role, {}) is False
    assert resolve_all([], role, {}) is True


def test_any_and_all_compose_resolve():
    cashier = _role('cashier')
    assert resolve_any(['users.manage', 'cash.open_close'], cashier) is True
    assert resolve_all(['users.manage', 'cash.open_close'], cashier) is False
    assert resolve_all(['customers.view', 'cash.open_close'], cashier) is True
    assert resolve_all(['customers.view', 'cash.open_close'], cashier, {'customers.view': False}) is False


def test_effective_permissions_applies_overrides_once():
    operator = _role('operator')
    assert effective_permissions(operator) == ARCHETYPE_DEFAULTS['operator']
    eff = effective_permissions(operator, {'orders.create': False, 'reports.view': True})
    assert 'orders.create' not in eff
    assert 'reports.view' in eff
    assert eff - {'reports.view'} == ARCHETYPE_DEFAULTS['operator'] - {'orders.create'}


def test_resolve_is_deterministic():
    role = _role('supervisor')
    overrides = {'cash.open_close': True}
    first = [resolve(p.key, role, overrides) for p in list_permissions()]
    second = [resolve(p.key, role, overrides) for p in list_permissions()]
    assert first == second
    assert overrides == {'cash.open_close': True}
