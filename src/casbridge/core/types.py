"""
casbridge Core Types

Fundamental type definitions shared by the CAS client and the realm.

Design Principles:
- Immutable: All types use frozen attrs for safety
- Validated: Type constraints enforced at construction
- Secret-aware: passwords and tickets stay out of repr()
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class ValidationProtocol(Enum):
    """
    Service ticket validation protocol variant.

    Values are the CAS server endpoint path (relative to the server prefix).
    """

    CAS1 = "validate"
    CAS2 = "serviceValidate"
    CAS2_PROXY = "proxyValidate"
    CAS3 = "p3/serviceValidate"
    SAML11 = "samlValidate"

    @property
    def endpoint(self) -> str:
        """Validation endpoint path relative to the CAS server prefix."""
        return self.value

    @classmethod
    def parse(cls, value: Any) -> ValidationProtocol:
        """
        Parse a protocol from configuration.

        Accepts members, member names (any case) and the legacy plugin
        values "CAS" and "SAML".

        Examples:
            "cas3" -> ValidationProtocol.CAS3
            "SAML" -> ValidationProtocol.SAML11
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid validation protocol: {value!r}")

        key = value.strip().upper().replace("-", "_")
        aliases = {
            "CAS": cls.CAS2,
            "CAS10": cls.CAS1,
            "CAS20": cls.CAS2,
            "CAS30": cls.CAS3,
            "SAML": cls.SAML11,
            "PROXY": cls.CAS2_PROXY,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Invalid validation protocol: {value!r}") from None


# =============================================================================
# CREDENTIALS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class UsernamePasswordCredentials:
    """
    Username/password pair presented by the host application.

    Transient: never persisted, never logged.
    """

    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def is_complete(self) -> bool:
        """True when both username and password are non-empty strings."""
        return (
            isinstance(self.username, str)
            and bool(self.username)
            and isinstance(self.password, str)
            and bool(self.password)
        )


# =============================================================================
# TICKETS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class TicketGrantingTicket:
    """
    Ticket-granting ticket resource on the CAS server.

    INVARIANT: location is an absolute URL
    """

    location: str = field(validator=[validators.instance_of(str), validators.min_len(1)])

    def __attrs_post_init__(self) -> None:
        parts = urlsplit(self.location)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"TGT location must be an absolute URL: {self.location}")

    @property
    def ticket_id(self) -> str:
        """Ticket identifier (last path segment of the resource URL)."""
        return urlsplit(self.location).path.rstrip("/").rsplit("/", 1)[-1]

    def __str__(self) -> str:
        return self.location


@attrs.define(frozen=True, slots=True)
class ServiceTicket:
    """
    Single-use service ticket for one target service.

    INVARIANT: value is non-empty
    """

    value: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    service: str = ""

    def __str__(self) -> str:
        return self.value


# =============================================================================
# ASSERTION
# =============================================================================


def _copy_attributes(value: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if not value:
        return {}
    return dict(value)


@attrs.define(frozen=True, slots=True)
class Assertion:
    """
    Identity asserted by the CAS server for a validated service ticket.

    Attributes map names to a single value or a list of values.

    INVARIANT: principal_name is non-empty
    """

    principal_name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    attributes: Mapping[str, Any] = field(factory=dict, converter=_copy_attributes)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    authentication_date: Optional[datetime] = None

    def is_valid_at(
        self,
        time: Optional[datetime] = None,
        tolerance: timedelta = timedelta(0),
    ) -> bool:
        """
        Check the assertion validity window (open ends always pass).

        tolerance widens the window on both sides to absorb clock skew.
        """
        if time is None:
            time = datetime.now(timezone.utc)
        if self.valid_from is not None and time + tolerance < self.valid_from:
            return False
        if self.valid_until is not None and time - tolerance >= self.valid_until:
            return False
        return True


# =============================================================================
# AUTHENTICATION / AUTHORIZATION RESULTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class PrincipalCollection:
    """
    Ordered principals attributed to a single realm.

    For CAS the order is: principal name, then the attribute mapping.
    """

    realm_name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    principals: Tuple[Any, ...] = field(converter=tuple)

    def __attrs_post_init__(self) -> None:
        if not self.principals:
            raise ValueError("PrincipalCollection requires at least one principal")

    @property
    def primary_principal(self) -> Any:
        return self.principals[0]

    @property
    def attributes(self) -> Mapping[str, Any]:
        """Attribute mapping carried as the second principal, if any."""
        if len(self.principals) > 1 and isinstance(self.principals[1], Mapping):
            return self.principals[1]
        return {}

    def from_realm(self, realm_name: str) -> List[Any]:
        """Return the principals attributed to realm_name."""
        if realm_name != self.realm_name:
            return []
        return list(self.principals)

    @property
    def realm_names(self) -> FrozenSet[str]:
        return frozenset({self.realm_name})

    def __hash__(self) -> int:
        # The attribute dict is unhashable; equal collections share realm
        # and primary principal.
        return hash((self.realm_name, self.primary_principal))

    def __len__(self) -> int:
        return len(self.principals)

    def __iter__(self):
        return iter(self.principals)


@attrs.define(frozen=True, slots=True)
class AuthenticationInfo:
    """
    Result of a successful authentication.

    Attributes:
        principals: Principal name and attributes keyed under the realm
        credentials: Service ticket retained as proof of authentication
    """

    principals: PrincipalCollection = field(
        validator=validators.instance_of(PrincipalCollection)
    )
    credentials: str = field(repr=False)

    @property
    def principal_name(self) -> str:
        return self.principals.primary_principal

    @property
    def attributes(self) -> Mapping[str, Any]:
        return self.principals.attributes

    @property
    def realm_name(self) -> str:
        return self.principals.realm_name


@attrs.define(frozen=True, slots=True)
class AuthorizationInfo:
    """Roles and permissions granted to a set of principals."""

    roles: FrozenSet[str] = field(factory=frozenset, converter=frozenset)
    permissions: FrozenSet[str] = field(factory=frozenset, converter=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_permitted(self, permission: str) -> bool:
        return permission in self.permissions
