"""
casbridge Assertion-to-Roles Mapping

Derives roles and permissions from the attributes of a CAS assertion.

Attribute values may be a single string, a list of strings, or
comma-separated strings ("admin, dev"); all are flattened and trimmed.
"""

from __future__ import annotations

from typing import Any, FrozenSet, Iterable, Mapping, Set

from casbridge.core.types import AuthorizationInfo


def split_attribute_values(value: Any) -> Set[str]:
    """
    Flatten an attribute value into a set of names.

    Examples:
        "admin" -> {"admin"}
        "admin, dev" -> {"admin", "dev"}
        ["admin", "dev,ops"] -> {"admin", "dev", "ops"}
    """
    if value is None:
        return set()
    if isinstance(value, (list, tuple, set, frozenset)):
        names: Set[str] = set()
        for item in value:
            names |= split_attribute_values(item)
        return names
    return {part.strip() for part in str(value).split(",") if part.strip()}


def values_for_attributes(
    attributes: Mapping[str, Any],
    attribute_names: Iterable[str],
) -> Set[str]:
    """Collect the flattened values of the named attributes."""
    values: Set[str] = set()
    for name in attribute_names:
        values |= split_attribute_values(attributes.get(name))
    return values


def authorization_from_attributes(
    attributes: Mapping[str, Any],
    role_attribute_names: FrozenSet[str] = frozenset(),
    default_roles: FrozenSet[str] = frozenset(),
    permission_attribute_names: FrozenSet[str] = frozenset(),
    default_permissions: FrozenSet[str] = frozenset(),
) -> AuthorizationInfo:
    """
    Build AuthorizationInfo from assertion attributes.

    Roles are the default roles plus the values of every attribute named in
    role_attribute_names; permissions likewise.
    """
    roles = set(default_roles) | values_for_attributes(attributes, role_attribute_names)
    permissions = set(default_permissions) | values_for_attributes(
        attributes, permission_attribute_names
    )
    return AuthorizationInfo(roles=roles, permissions=permissions)
