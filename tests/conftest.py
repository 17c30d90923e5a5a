"""
Pytest configuration and shared fixtures for casbridge tests.

The CAS server is simulated in-process with httpx.MockTransport; no test
touches the network.
"""

import uuid
import xml.etree.ElementTree as ET
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qs
from xml.sax.saxutils import escape

import httpx
import pytest

from casbridge.core.types import UsernamePasswordCredentials, ValidationProtocol
from casbridge.cas.rest_client import CasRestClient, create_cas_rest_client
from casbridge.realm.authenticator import CasAuthenticatingRealm, create_cas_realm
from casbridge.realm.config import CasConfiguration


CAS_PREFIX = "https://cas.example.com/cas"
SERVICE_URL = "https://repo.example.com/"


# =============================================================================
# FAKE CAS SERVER
# =============================================================================


class FakeCasServer:
    """
    In-process CAS server speaking the REST ticket API and the validation
    protocols.

    failures maps a step name ("create_tgt", "grant_st", "validate",
    "destroy_tgt") to "timeout", "connect" or an HTTP status code.
    """

    def __init__(self) -> None:
        self.users: Dict[str, str] = {"alice": "pw123", "bob": "secret"}
        self.attributes: Dict[str, Dict[str, Any]] = {
            "alice": {"roles": ["admin"], "mail": "alice@example.com"},
            "bob": {"roles": ["dev", "ops"], "groups": "staff,users"},
        }
        self.failures: Dict[str, Union[str, int]] = {}
        self.proxies: List[str] = []
        self.tgts: Dict[str, str] = {}
        self.service_tickets: Dict[str, tuple] = {}
        self.destroyed: List[str] = []
        self.steps: Counter = Counter()
        self.requests: List[httpx.Request] = []

    # -------------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def count(self, step: str) -> int:
        return self.steps[step]

    @property
    def remote_calls(self) -> int:
        return sum(self.steps.values())

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self._step_for(request)
        self.steps[step] += 1

        failure = self.failures.get(step)
        if failure == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if failure == "connect":
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(failure, int):
            return httpx.Response(failure, text="failure")

        return getattr(self, f"_{step}")(request)

    @staticmethod
    def _step_for(request: httpx.Request) -> str:
        path = request.url.path
        if path == "/cas/v1/tickets" and request.method == "POST":
            return "create_tgt"
        if path.startswith("/cas/v1/tickets/") and request.method == "POST":
            return "grant_st"
        if path.startswith("/cas/v1/tickets/") and request.method == "DELETE":
            return "destroy_tgt"
        return "validate"

    @staticmethod
    def _form(request: httpx.Request) -> Dict[str, str]:
        parsed = parse_qs(request.read().decode("utf-8"))
        return {key: values[0] for key, values in parsed.items()}

    # -------------------------------------------------------------------------
    # REST ticket API
    # -------------------------------------------------------------------------

    def _create_tgt(self, request: httpx.Request) -> httpx.Response:
        form = self._form(request)
        username = form.get("username")
        if self.users.get(username) != form.get("password"):
            return httpx.Response(400, text="error.authentication.credentials.bad")
        tgt_id = f"TGT-{uuid.uuid4().hex}"
        self.tgts[tgt_id] = username
        return httpx.Response(
            201,
            headers={"Location": f"{CAS_PREFIX}/v1/tickets/{tgt_id}"},
            text="<html>Created</html>",
        )

    def _grant_st(self, request: httpx.Request) -> httpx.Response:
        tgt_id = request.url.path.rsplit("/", 1)[-1]
        if tgt_id not in self.tgts:
            return httpx.Response(404, text="TGT not found")
        service = self._form(request).get("service", "")
        st = f"ST-{uuid.uuid4().hex}"
        self.service_tickets[st] = (self.tgts[tgt_id], service)
        return httpx.Response(200, text=st)

    def _destroy_tgt(self, request: httpx.Request) -> httpx.Response:
        tgt_id = request.url.path.rsplit("/", 1)[-1]
        self.destroyed.append(tgt_id)
        if self.tgts.pop(tgt_id, None) is None:
            return httpx.Response(404)
        return httpx.Response(200, text=tgt_id)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _consume(self, ticket: Optional[str], service: Optional[str]) -> Optional[str]:
        entry = self.service_tickets.pop(ticket, None)
        if entry is None or entry[1] != service:
            return None
        return entry[0]

    def _validate(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/cas/samlValidate":
            return self._saml_validate(request)

        params = request.url.params
        username = self._consume(params.get("ticket"), params.get("service"))

        if path == "/cas/validate":
            text = f"yes\n{username}\n" if username else "no\n\n"
            return httpx.Response(200, text=text)

        if username is None:
            return httpx.Response(200, text=cas2_failure("INVALID_TICKET", "Ticket not recognized"))
        return httpx.Response(
            200, text=cas2_success(username, self.attributes.get(username, {}), self.proxies)
        )

    def _saml_validate(self, request: httpx.Request) -> httpx.Response:
        root = ET.fromstring(request.read())
        artifact = root.find(".//{urn:oasis:names:tc:SAML:1.0:protocol}AssertionArtifact")
        ticket = artifact.text if artifact is not None else None
        username = self._consume(ticket, request.url.params.get("TARGET"))
        if username is None:
            return httpx.Response(200, text=saml_failure("INVALID_TICKET"))
        return httpx.Response(200, text=saml_success(username, self.attributes.get(username, {})))


# =============================================================================
# RESPONSE BUILDERS
# =============================================================================


def cas2_success(username: str, attributes: Dict[str, Any], proxies: Optional[List[str]] = None) -> str:
    elements = []
    for name, value in attributes.items():
        for item in value if isinstance(value, list) else [value]:
            elements.append(f"<cas:{name}>{escape(item)}</cas:{name}>")
    proxy_xml = ""
    if proxies:
        proxy_xml = "<cas:proxies>" + "".join(
            f"<cas:proxy>{escape(p)}</cas:proxy>" for p in proxies
        ) + "</cas:proxies>"
    return (
        "<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>"
        "<cas:authenticationSuccess>"
        f"<cas:user>{escape(username)}</cas:user>"
        f"<cas:attributes>{''.join(elements)}</cas:attributes>"
        f"{proxy_xml}"
        "</cas:authenticationSuccess>"
        "</cas:serviceResponse>"
    )


def cas2_failure(code: str, message: str) -> str:
    return (
        "<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>"
        f"<cas:authenticationFailure code=\"{code}\">{escape(message)}</cas:authenticationFailure>"
        "</cas:serviceResponse>"
    )


def _saml_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def saml_success(
    username: str,
    attributes: Dict[str, Any],
    not_before: Optional[datetime] = None,
    not_on_or_after: Optional[datetime] = None,
) -> str:
    now = datetime.now(timezone.utc)
    not_before = not_before or now - timedelta(seconds=5)
    not_on_or_after = not_on_or_after or now + timedelta(seconds=30)
    attribute_xml = "".join(
        f'<saml:Attribute AttributeName="{name}" AttributeNamespace="http://www.ja-sig.org/products/cas/">'
        + "".join(
            f"<saml:AttributeValue>{escape(item)}</saml:AttributeValue>"
            for item in (value if isinstance(value, list) else [value])
        )
        + "</saml:Attribute>"
        for name, value in attributes.items()
    )
    return (
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
        "<SOAP-ENV:Header/><SOAP-ENV:Body>"
        '<Response xmlns="urn:oasis:names:tc:SAML:1.0:protocol" '
        'xmlns:saml="urn:oasis:names:tc:SAML:1.0:assertion" '
        'xmlns:samlp="urn:oasis:names:tc:SAML:1.0:protocol" '
        f'IssueInstant="{_saml_time(now)}" MajorVersion="1" MinorVersion="1" '
        f'Recipient="{SERVICE_URL}" ResponseID="_{uuid.uuid4().hex}">'
        '<Status><StatusCode Value="samlp:Success"></StatusCode></Status>'
        '<saml:Assertion AssertionID="_a1" IssueInstant="' + _saml_time(now) + '" '
        'Issuer="localhost" MajorVersion="1" MinorVersion="1">'
        f'<saml:Conditions NotBefore="{_saml_time(not_before)}" '
        f'NotOnOrAfter="{_saml_time(not_on_or_after)}">'
        f"<saml:AudienceRestrictionCondition><saml:Audience>{SERVICE_URL}</saml:Audience>"
        "</saml:AudienceRestrictionCondition></saml:Conditions>"
        "<saml:AttributeStatement><saml:Subject>"
        f"<saml:NameIdentifier>{escape(username)}</saml:NameIdentifier></saml:Subject>"
        f"{attribute_xml}</saml:AttributeStatement>"
        f'<saml:AuthenticationStatement AuthenticationInstant="{_saml_time(now)}" '
        'AuthenticationMethod="urn:oasis:names:tc:SAML:1.0:am:password">'
        "<saml:Subject>"
        f"<saml:NameIdentifier>{escape(username)}</saml:NameIdentifier>"
        "</saml:Subject></saml:AuthenticationStatement>"
        "</saml:Assertion></Response>"
        "</SOAP-ENV:Body></SOAP-ENV:Envelope>"
    )


def saml_failure(code: str) -> str:
    return (
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
        "<SOAP-ENV:Body>"
        '<Response xmlns="urn:oasis:names:tc:SAML:1.0:protocol" '
        'xmlns:samlp="urn:oasis:names:tc:SAML:1.0:protocol">'
        '<Status><StatusCode Value="samlp:RequestDenied" />'
        f"<StatusMessage>{code}</StatusMessage></Status>"
        "</Response></SOAP-ENV:Body></SOAP-ENV:Envelope>"
    )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def cas_server() -> FakeCasServer:
    """Fresh fake CAS server."""
    return FakeCasServer()


@pytest.fixture
def cas_config() -> CasConfiguration:
    """Configuration using CAS 2.0 validation and a "roles" role attribute."""
    return CasConfiguration(
        cas_server_url_prefix=CAS_PREFIX,
        cas_service_url=SERVICE_URL,
        validation_protocol=ValidationProtocol.CAS2,
        role_attribute_names={"roles"},
        request_timeout=2.0,
    )


@pytest.fixture
def rest_client(cas_server: FakeCasServer) -> CasRestClient:
    """Unbound REST client talking to the fake server."""
    return create_cas_rest_client(timeout=2.0, transport=cas_server.transport())


@pytest.fixture
def realm(cas_server: FakeCasServer, cas_config: CasConfiguration) -> CasAuthenticatingRealm:
    """Configured realm talking to the fake server."""
    return create_cas_realm(cas_config, transport=cas_server.transport())


@pytest.fixture
def alice() -> UsernamePasswordCredentials:
    return UsernamePasswordCredentials(username="alice", password="pw123")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def make_http(handler) -> httpx.Client:
    """HTTP client whose requests are answered by handler."""
    return httpx.Client(transport=httpx.MockTransport(handler))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
