"""
Unit tests for casbridge.core.types module.

Tests core type definitions, validators, and invariants.
"""

import pytest
from datetime import datetime, timedelta, timezone

from casbridge.core.types import (
    Assertion,
    AuthenticationInfo,
    AuthorizationInfo,
    PrincipalCollection,
    ServiceTicket,
    TicketGrantingTicket,
    UsernamePasswordCredentials,
    ValidationProtocol,
)


class TestValidationProtocol:
    """Tests for ValidationProtocol parsing."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("CAS1", ValidationProtocol.CAS1),
            ("cas3", ValidationProtocol.CAS3),
            ("cas2_proxy", ValidationProtocol.CAS2_PROXY),
            ("CAS2-PROXY", ValidationProtocol.CAS2_PROXY),
            ("CAS", ValidationProtocol.CAS2),
            ("SAML", ValidationProtocol.SAML11),
            (" saml11 ", ValidationProtocol.SAML11),
        ],
    )
    def test_parse(self, value, expected):
        assert ValidationProtocol.parse(value) is expected

    def test_parse_member_passthrough(self):
        assert ValidationProtocol.parse(ValidationProtocol.CAS3) is ValidationProtocol.CAS3

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            ValidationProtocol.parse("kerberos")

    def test_parse_non_string(self):
        with pytest.raises(ValueError):
            ValidationProtocol.parse(3)

    def test_endpoints(self):
        assert ValidationProtocol.CAS1.endpoint == "validate"
        assert ValidationProtocol.CAS3.endpoint == "p3/serviceValidate"
        assert ValidationProtocol.SAML11.endpoint == "samlValidate"


class TestUsernamePasswordCredentials:
    """Tests for UsernamePasswordCredentials."""

    def test_complete(self):
        assert UsernamePasswordCredentials("alice", "pw123").is_complete

    @pytest.mark.parametrize(
        "username, password",
        [(None, "pw"), ("alice", None), ("", "pw"), ("alice", ""), (None, None)],
    )
    def test_incomplete(self, username, password):
        assert not UsernamePasswordCredentials(username, password).is_complete

    def test_password_not_in_repr(self):
        creds = UsernamePasswordCredentials("alice", "pw123")
        assert "pw123" not in repr(creds)
        assert "alice" in repr(creds)


class TestTickets:
    """Tests for TicketGrantingTicket and ServiceTicket."""

    def test_tgt_ticket_id(self):
        tgt = TicketGrantingTicket("https://cas.example.com/cas/v1/tickets/TGT-1-abc")
        assert tgt.ticket_id == "TGT-1-abc"
        assert str(tgt) == "https://cas.example.com/cas/v1/tickets/TGT-1-abc"

    def test_tgt_requires_absolute_url(self):
        with pytest.raises(ValueError):
            TicketGrantingTicket("/cas/v1/tickets/TGT-1")

    def test_tgt_requires_value(self):
        with pytest.raises(ValueError):
            TicketGrantingTicket("")

    def test_service_ticket(self):
        st = ServiceTicket("ST-1-xyz", service="https://repo.example.com/")
        assert str(st) == "ST-1-xyz"

    def test_service_ticket_requires_value(self):
        with pytest.raises(ValueError):
            ServiceTicket("")


class TestAssertion:
    """Tests for Assertion."""

    def test_defaults(self):
        assertion = Assertion(principal_name="alice")
        assert assertion.attributes == {}
        assert assertion.is_valid_at()

    def test_attributes_copied(self):
        source = {"roles": ["admin"]}
        assertion = Assertion(principal_name="alice", attributes=source)
        source["roles"] = ["other"]
        assert assertion.attributes == {"roles": ["admin"]}

    def test_requires_principal_name(self):
        with pytest.raises(ValueError):
            Assertion(principal_name="")

    def test_validity_window(self):
        now = datetime.now(timezone.utc)
        assertion = Assertion(
            principal_name="alice",
            valid_from=now - timedelta(minutes=1),
            valid_until=now + timedelta(minutes=1),
        )
        assert assertion.is_valid_at(now)
        assert not assertion.is_valid_at(now + timedelta(minutes=2))
        assert not assertion.is_valid_at(now - timedelta(minutes=2))

    def test_validity_window_tolerance(self):
        now = datetime.now(timezone.utc)
        assertion = Assertion(
            principal_name="alice",
            valid_from=now + timedelta(seconds=1),
            valid_until=now + timedelta(seconds=5),
        )
        assert not assertion.is_valid_at(now)
        assert assertion.is_valid_at(now, tolerance=timedelta(seconds=2))
        assert not assertion.is_valid_at(now + timedelta(seconds=6))
        assert assertion.is_valid_at(now + timedelta(seconds=6), tolerance=timedelta(seconds=2))


class TestPrincipalCollection:
    """Tests for PrincipalCollection."""

    def test_primary_and_attributes(self):
        principals = PrincipalCollection("CasRealm", ("alice", {"roles": "admin"}))
        assert principals.primary_principal == "alice"
        assert principals.attributes == {"roles": "admin"}
        assert len(principals) == 2
        assert list(principals) == ["alice", {"roles": "admin"}]

    def test_from_realm(self):
        principals = PrincipalCollection("CasRealm", ("alice", {}))
        assert principals.from_realm("CasRealm") == ["alice", {}]
        assert principals.from_realm("LdapRealm") == []
        assert principals.realm_names == frozenset({"CasRealm"})

    def test_no_attributes(self):
        principals = PrincipalCollection("CasRealm", ["alice"])
        assert principals.attributes == {}

    def test_requires_principal(self):
        with pytest.raises(ValueError):
            PrincipalCollection("CasRealm", ())


class TestResults:
    """Tests for AuthenticationInfo and AuthorizationInfo."""

    def test_authentication_info(self):
        info = AuthenticationInfo(
            principals=PrincipalCollection("CasRealm", ("alice", {"mail": "a@x"})),
            credentials="ST-1",
        )
        assert info.principal_name == "alice"
        assert info.attributes == {"mail": "a@x"}
        assert info.realm_name == "CasRealm"
        assert "ST-1" not in repr(info)

    def test_authentication_info_hashable(self):
        info = AuthenticationInfo(
            principals=PrincipalCollection("CasAuthenticatingRealm", ("alice", {"roles": "admin"})),
            credentials="ST-1",
        )
        same = AuthenticationInfo(
            principals=PrincipalCollection("CasAuthenticatingRealm", ("alice", {"roles": "admin"})),
            credentials="ST-1",
        )
        assert hash(info) == hash(same)
        assert {info: "cached"}[same] == "cached"
        assert hash(info.principals) == hash(same.principals)

    def test_authorization_info_equality(self):
        a = AuthorizationInfo(roles=["admin", "dev"], permissions=set())
        b = AuthorizationInfo(roles={"dev", "admin"})
        assert a == b
        assert a.has_role("admin")
        assert not a.is_permitted("repo:read")
