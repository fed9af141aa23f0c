"""Authorization engine: the one place that decides whether a permission is allowed.

All functions are pure and never raise. Anything ambiguous (missing role,
inactive role, unknown key, unknown archetype) resolves to ``False``.

``role`` is anything with ``archetype`` and ``is_active`` attributes (the ORM
``Role`` or a snapshot). ``overrides`` maps permission key -> granted for that
role; a missing key means "no override row".
"""
from __future__ import annotations
from typing import FrozenSet, Iterable, Mapping, Optional, Protocol

from washops.constants.permissions import PERMISSIONS, archetype_default, is_known_permission


class RoleLike(Protocol):
    archetype: str
    is_active: bool


Overrides = Optional[Mapping[str, bool]]


def resolve(permission: str, role: Optional[RoleLike], overrides: Overrides = None) -> bool:
    if role is None or not getattr(role, 'is_active', False):
        return False
    if not isinstance(permission, str) or not is_known_permission(permission):
        return False
    if overrides and permission in overrides:
        return overrides[permission] is True
    return archetype_default(getattr(role, 'archetype', None) or '', permission)


def resolve_any(permissions: Iterable[str], role: Optional[RoleLike], overrides: Overrides = None) -> bool:
    """OR-composition. An empty list is False: nothing to show."""
    return any(resolve(p, role, overrides) for p in permissions)


def resolve_all(permissions: Iterable[str], role: Optional[RoleLike], overrides: Overrides = None) -> bool:
    """AND-composition. An empty list is vacuously True."""
    return all(resolve(p, role, overrides) for p in permissions)


def effective_permissions(role: Optional[RoleLike], overrides: Overrides = None) -> FrozenSet[str]:
    return frozenset(p.key for p in PERMISSIONS if resolve(p.key, role, overrides))
