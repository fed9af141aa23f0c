"""Permission catalog and role-archetype defaults.

Single source of truth for every capability key (``module.action``) and for the
default grant of each built-in archetype. Extend cautiously; never rename keys
silently, add new ones and migrate override rows instead.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

ROOT = 'root'
ADMIN = 'admin'
SUPERVISOR = 'supervisor'
CASHIER = 'cashier'
OPERATOR = 'operator'
MARKETING = 'marketing'
ACCOUNTANT = 'accountant'

ARCHETYPES: Tuple[str, ...] = (ROOT, ADMIN, SUPERVISOR, CASHIER, OPERATOR, MARKETING, ACCOUNTANT)

MIN_LEVEL = 1
MAX_LEVEL = 100

# Seed level of the global system role for each archetype. Root is the unique apex.
ARCHETYPE_LEVELS: Dict[str, int] = {
    ROOT: MAX_LEVEL,
    ADMIN: 90,
    SUPERVISOR: 70,
    ACCOUNTANT: 60,
    CASHIER: 50,
    MARKETING: 40,
    OPERATOR: 30,
}

ARCHETYPE_LABELS: Dict[str, str] = {
    ROOT: 'Root',
    ADMIN: 'Administrator',
    SUPERVISOR: 'Supervisor',
    CASHIER: 'Cashier',
    OPERATOR: 'Operator',
    MARKETING: 'Marketing',
    ACCOUNTANT: 'Accountant',
}

ARCHETYPE_DESCRIPTIONS: Dict[str, str] = {
    ROOT: 'Full access to every company and branch',
    ADMIN: 'Manages its company, branches, settings, prices and users',
    SUPERVISOR: 'Daily operations, cash register, cut-offs and discount approval',
    CASHIER: 'Sales, payments, invoices, opening and closing the register',
    OPERATOR: 'Takes and advances orders, vehicle check-in/out, supply consumption',
    MARKETING: 'Campaigns, coupons and customer segmentation',
    ACCOUNTANT: 'Reports, journal entries and taxes',
}

MODULE_ACTIONS: Dict[str, List[str]] = {
    'accounting': ['view', 'manage_cash', 'manage_invoices', 'manage_taxes', 'view_reports'],
    'appointments': ['view', 'create', 'edit'],
    'branches': ['view', 'manage'],
    'cash': ['view', 'open_close', 'manage_transactions'],
    'companies': ['view', 'manage'],
    'customers': ['view', 'create', 'edit'],
    'dashboard': ['view'],
    'inventory': ['view', 'manage_stock'],
    'marketing': ['view', 'create', 'edit', 'manage_loyalty'],
    'orders': ['view', 'create', 'edit', 'manage_status'],
    'reports': ['view', 'export'],
    'services': ['view', 'edit', 'manage'],
    'staff': ['view', 'manage'],
    'users': ['view', 'manage'],
    'vehicles': ['view', 'manage'],
}

MODULE_LABELS: Dict[str, str] = {
    'accounting': 'Accounting',
    'appointments': 'Appointments',
    'branches': 'Branches',
    'cash': 'Cash register',
    'companies': 'Companies',
    'customers': 'Customers',
    'dashboard': 'Dashboard',
    'inventory': 'Inventory',
    'marketing': 'Marketing',
    'orders': 'Service orders',
    'reports': 'Reports',
    'services': 'Services and packages',
    'staff': 'Staff',
    'users': 'System users',
    'vehicles': 'Vehicles',
}

# Archetype -> granted keys. '*' means every key in the catalog.
# Each list is the archetype's legacy capability set expressed as catalog keys;
# several legacy capabilities collapse onto one key (e.g. opening and closing the
# register are both cash.open_close).
ARCHETYPE_PRESETS: Dict[str, List[str]] = {
    ROOT: ['*'],
    ADMIN: [
        'branches.view', 'branches.manage',
        'users.manage',
        'services.edit', 'services.manage',
        'orders.edit', 'orders.manage_status',
        'cash.manage_transactions',
        'reports.view', 'reports.export',
        'appointments.view', 'appointments.create', 'appointments.edit',
        'customers.view', 'customers.create', 'customers.edit',
        'marketing.view', 'marketing.create', 'marketing.manage_loyalty',
        'accounting.view',
    ],
    SUPERVISOR: [
        'orders.edit', 'orders.manage_status',
        'cash.manage_transactions',
        'reports.view',
        'appointments.view', 'appointments.create', 'appointments.edit',
        'customers.view', 'customers.create', 'customers.edit',
    ],
    CASHIER: [
        'accounting.manage_cash', 'accounting.manage_invoices',
        'cash.open_close',
        'appointments.view', 'appointments.create', 'appointments.edit',
        'customers.view', 'customers.create',
    ],
    OPERATOR: [
        'appointments.view', 'appointments.edit',
        'customers.view',
        'orders.create', 'orders.edit', 'orders.manage_status',
        'inventory.manage_stock',
    ],
    MARKETING: [
        'customers.view',
        'marketing.view', 'marketing.create', 'marketing.edit', 'marketing.manage_loyalty',
    ],
    ACCOUNTANT: [
        'reports.view', 'reports.export',
        'accounting.view', 'accounting.view_reports', 'accounting.manage_taxes',
    ],
}


@dataclass(frozen=True)
class PermissionDef:
    module: str
    action: str

    @property
    def key(self) -> str:
        return f"{self.module}.{self.action}"

    @property
    def description(self) -> str:
        return f"{MODULE_LABELS.get(self.module, self.module)} - {self.action.replace('_', ' ')}"


def _build_catalog() -> Tuple[PermissionDef, ...]:
    defs = [PermissionDef(module, action) for module, actions in MODULE_ACTIONS.items() for action in actions]
    return tuple(sorted(defs, key=lambda d: (d.module, d.action)))


PERMISSIONS: Tuple[PermissionDef, ...] = _build_catalog()
PERMISSION_KEYS: FrozenSet[str] = frozenset(p.key for p in PERMISSIONS)


def _expand_presets() -> Dict[str, FrozenSet[str]]:
    out: Dict[str, FrozenSet[str]] = {}
    for archetype in ARCHETYPES:
        codes = ARCHETYPE_PRESETS.get(archetype, [])
        if '*' in codes:
            out[archetype] = PERMISSION_KEYS
            continue
        unknown = sorted(set(codes) - PERMISSION_KEYS)
        if unknown:
            raise ValueError(f"Archetype '{archetype}' references unknown permission keys: {unknown}")
        out[archetype] = frozenset(codes)
    return out


ARCHETYPE_DEFAULTS: Dict[str, FrozenSet[str]] = _expand_presets()


def list_permissions() -> Tuple[PermissionDef, ...]:
    """Every permission ordered by module then action."""
    return PERMISSIONS


def permissions_by_module() -> Dict[str, Tuple[PermissionDef, ...]]:
    grouped: Dict[str, List[PermissionDef]] = {}
    for p in PERMISSIONS:
        grouped.setdefault(p.module, []).append(p)
    return {module: tuple(items) for module, items in grouped.items()}


def is_known_permission(key: str) -> bool:
    return key in PERMISSION_KEYS


def is_archetype(name: str) -> bool:
    return name in ARCHETYPE_DEFAULTS


def archetype_default(archetype: str, key: str) -> bool:
    """Default grant for (archetype, key). Unknown archetype or key -> False."""
    return key in ARCHETYPE_DEFAULTS.get(archetype, frozenset())


def default_map(key: str) -> Dict[str, bool]:
    """Per-archetype default grants for one permission key."""
    return {archetype: archetype_default(archetype, key) for archetype in ARCHETYPES}
