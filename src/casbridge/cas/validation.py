"""
casbridge Ticket Validation

Service ticket validators for the CAS validation protocols.

Variants:
- CAS 1.0: GET /validate, plain text "yes\\n<user>\\n" or "no\\n\\n"
- CAS 2.0: GET /serviceValidate, XML serviceResponse
- CAS 2.0 proxy: GET /proxyValidate, XML serviceResponse with proxy chain
- CAS 3.0: GET /p3/serviceValidate, XML serviceResponse with attributes
- SAML 1.1: POST /samlValidate?TARGET=<service>, SOAP envelope

Every variant produces the same Assertion shape. Failures raise
TicketValidationError; transport failures raise ValidationTransportError.
"""

from __future__ import annotations

import uuid
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import urljoin
from xml.sax.saxutils import escape

import attrs
import httpx
import structlog
from attrs import field

from casbridge.core.exceptions import (
    ConfigurationError,
    InvalidProxyChainError,
    TicketValidationError,
    ValidationTransportError,
)
from casbridge.core.types import Assertion, ValidationProtocol

logger = structlog.get_logger()


CAS_NS = {"cas": "http://www.yale.edu/tp/cas"}

SAML11_NS = {
    "soap": "http://schemas.xmlsoap.org/soap/envelope/",
    "samlp": "urn:oasis:names:tc:SAML:1.0:protocol",
    "saml": "urn:oasis:names:tc:SAML:1.0:assertion",
}

SAML11_REQUEST = (
    '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
    "<SOAP-ENV:Header/>"
    "<SOAP-ENV:Body>"
    '<samlp:Request xmlns:samlp="urn:oasis:names:tc:SAML:1.0:protocol" '
    'MajorVersion="1" MinorVersion="1" RequestID="{request_id}" IssueInstant="{issue_instant}">'
    "<samlp:AssertionArtifact>{ticket}</samlp:AssertionArtifact>"
    "</samlp:Request>"
    "</SOAP-ENV:Body>"
    "</SOAP-ENV:Envelope>"
)


# =============================================================================
# PARSING HELPERS
# =============================================================================


def _local_name(tag: str) -> str:
    """Strip the {namespace} prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _add_attribute(attributes: Dict[str, Any], name: str, value: Any) -> None:
    """Add a value, turning repeated names into lists."""
    if name not in attributes:
        attributes[name] = value
    elif isinstance(attributes[name], list):
        attributes[name].append(value)
    else:
        attributes[name] = [attributes[name], value]


def _parse_xml(body: str) -> ET.Element:
    try:
        return ET.fromstring(body)
    except ET.ParseError as e:
        raise TicketValidationError(
            f"Unparseable validation response: {e}", code="INVALID_RESPONSE"
        ) from e


def _parse_saml_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an xsd:dateTime attribute (UTC assumed when no offset)."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("saml_datetime_unparseable", value=value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# BASE VALIDATOR
# =============================================================================


@attrs.define
class TicketValidator(ABC):
    """
    Validates a service ticket against the CAS server.

    Attributes:
        server_url_prefix: CAS server base URL (e.g. https://cas.example.com/cas)
        http: HTTP session used for validation requests
        timeout: Per-request timeout in seconds
    """

    server_url_prefix: str
    http: httpx.Client = field(repr=False)
    timeout: float = 10.0
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    protocol: Optional[ValidationProtocol] = None

    @property
    def validation_url(self) -> str:
        """Absolute URL of this variant's validation endpoint."""
        return urljoin(self.server_url_prefix.rstrip("/") + "/", self.protocol.endpoint)

    def validate(self, ticket: str, service_url: str) -> Assertion:
        """
        Validate a service ticket for service_url.

        Returns:
            Assertion for the authenticated principal

        Raises:
            TicketValidationError: ticket rejected or response unusable
            ValidationTransportError: CAS server unreachable or timed out
        """
        self._logger.debug(
            "validate_ticket_start",
            protocol=self.protocol.name,
            url=self.validation_url,
            service=service_url,
        )

        try:
            response = self._send(ticket, service_url)
        except httpx.TimeoutException as e:
            raise ValidationTransportError(
                f"Timed out validating ticket at {self.validation_url}", code="TIMEOUT"
            ) from e
        except httpx.RequestError as e:
            raise ValidationTransportError(
                f"Error contacting {self.validation_url}: {e}", code="TRANSPORT_ERROR"
            ) from e

        if response.status_code != 200:
            raise TicketValidationError(
                f"Validation endpoint returned HTTP {response.status_code}",
                code=f"HTTP_{response.status_code}",
            )

        assertion = self._parse_response(response.text, service_url)

        self._logger.debug(
            "validate_ticket_success",
            protocol=self.protocol.name,
            principal=assertion.principal_name,
        )
        return assertion

    def _send(self, ticket: str, service_url: str) -> httpx.Response:
        return self.http.get(
            self.validation_url,
            params={"ticket": ticket, "service": service_url},
            timeout=self.timeout,
        )

    @abstractmethod
    def _parse_response(self, body: str, service_url: str) -> Assertion:
        """Turn a validation response body into an Assertion."""
        ...


# =============================================================================
# CAS 1.0
# =============================================================================


@attrs.define
class Cas10TicketValidator(TicketValidator):
    """CAS 1.0 plain text validation. No attributes are released."""

    protocol: Optional[ValidationProtocol] = ValidationProtocol.CAS1

    def _parse_response(self, body: str, service_url: str) -> Assertion:
        lines = body.splitlines()
        if not lines or lines[0].strip() != "yes":
            raise TicketValidationError(
                "CAS server rejected the ticket", code="INVALID_TICKET"
            )
        if len(lines) < 2 or not lines[1].strip():
            raise TicketValidationError(
                "CAS 1.0 response is missing the user name", code="INVALID_RESPONSE"
            )
        return Assertion(principal_name=lines[1].strip())


# =============================================================================
# CAS 2.0 / 3.0
# =============================================================================


@attrs.define
class Cas20ServiceTicketValidator(TicketValidator):
    """CAS 2.0 XML validation of service tickets."""

    protocol: Optional[ValidationProtocol] = ValidationProtocol.CAS2

    def _parse_response(self, body: str, service_url: str) -> Assertion:
        root = _parse_xml(body)

        failure = root.find("cas:authenticationFailure", CAS_NS)
        if failure is not None:
            raise TicketValidationError(
                (failure.text or "").strip() or "Ticket validation failed",
                code=failure.get("code"),
            )

        success = root.find("cas:authenticationSuccess", CAS_NS)
        if success is None:
            raise TicketValidationError(
                "No authenticationSuccess in validation response",
                code="INVALID_RESPONSE",
            )

        user = (success.findtext("cas:user", default="", namespaces=CAS_NS) or "").strip()
        if not user:
            raise TicketValidationError(
                "No user in validation response", code="INVALID_RESPONSE"
            )

        proxies = tuple(
            (p.text or "").strip()
            for p in success.findall("cas:proxies/cas:proxy", CAS_NS)
        )
        self._check_proxies(proxies)

        return Assertion(
            principal_name=user,
            attributes=self._parse_attributes(success),
        )

    def _check_proxies(self, proxies: Tuple[str, ...]) -> None:
        """Service tickets have no proxy chain; nothing to enforce."""
        return None

    @staticmethod
    def _parse_attributes(success: ET.Element) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {}
        container = success.find("cas:attributes", CAS_NS)
        if container is None:
            return attributes
        for element in container:
            _add_attribute(attributes, _local_name(element.tag), (element.text or "").strip())
        return attributes


@attrs.define
class Cas20ProxyTicketValidator(Cas20ServiceTicketValidator):
    """
    CAS 2.0 validation accepting proxy tickets.

    A ticket that went through proxies is accepted only if accept_any_proxy
    is set or its proxy chain is listed in allowed_proxy_chains.
    """

    protocol: Optional[ValidationProtocol] = ValidationProtocol.CAS2_PROXY
    accept_any_proxy: bool = False
    allowed_proxy_chains: FrozenSet[Tuple[str, ...]] = field(factory=frozenset, converter=frozenset)

    def _check_proxies(self, proxies: Tuple[str, ...]) -> None:
        if not proxies or self.accept_any_proxy:
            return
        if proxies in self.allowed_proxy_chains:
            return
        raise InvalidProxyChainError(proxies)


@attrs.define
class Cas30ServiceTicketValidator(Cas20ServiceTicketValidator):
    """CAS 3.0 validation; same document format as CAS 2.0."""

    protocol: Optional[ValidationProtocol] = ValidationProtocol.CAS3


# =============================================================================
# SAML 1.1
# =============================================================================


@attrs.define
class Saml11TicketValidator(TicketValidator):
    """
    CAS-flavoured SAML 1.1 validation.

    Assertions outside their NotBefore/NotOnOrAfter window (widened by
    tolerance) are ignored.
    """

    protocol: Optional[ValidationProtocol] = ValidationProtocol.SAML11
    tolerance: timedelta = timedelta(seconds=1)

    def _send(self, ticket: str, service_url: str) -> httpx.Response:
        envelope = SAML11_REQUEST.format(
            request_id=f"_{uuid.uuid4().hex}",
            issue_instant=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            ticket=escape(ticket),
        )
        return self.http.post(
            self.validation_url,
            params={"TARGET": service_url},
            content=envelope.encode("utf-8"),
            headers={
                "Content-Type": "text/xml; charset=utf-8",
                "SOAPAction": "http://www.oasis-open.org/committees/security",
            },
            timeout=self.timeout,
        )

    def _parse_response(self, body: str, service_url: str) -> Assertion:
        root = _parse_xml(body)

        response = root.find(".//samlp:Response", SAML11_NS)
        if response is None:
            raise TicketValidationError(
                "No SAML Response in validation response", code="INVALID_RESPONSE"
            )

        status_code = response.find("samlp:Status/samlp:StatusCode", SAML11_NS)
        status_value = status_code.get("Value", "") if status_code is not None else ""
        if not status_value.endswith("Success"):
            message = (
                response.findtext("samlp:Status/samlp:StatusMessage", default="", namespaces=SAML11_NS)
                or "SAML validation failed"
            )
            raise TicketValidationError(message.strip(), code=status_value or None)

        now = datetime.now(timezone.utc)
        for element in response.findall("saml:Assertion", SAML11_NS):
            assertion = self._parse_assertion(element)
            if assertion is None:
                continue
            if assertion.is_valid_at(now, tolerance=self.tolerance):
                return assertion
            self._logger.debug(
                "saml_assertion_outside_validity_window",
                valid_from=assertion.valid_from.isoformat() if assertion.valid_from else None,
                valid_until=assertion.valid_until.isoformat() if assertion.valid_until else None,
            )

        raise TicketValidationError(
            "No valid SAML assertion in validation response", code="INVALID_ASSERTION"
        )

    @staticmethod
    def _parse_assertion(element: ET.Element) -> Optional[Assertion]:
        statement = element.find("saml:AuthenticationStatement", SAML11_NS)
        if statement is None:
            return None
        name = (
            statement.findtext("saml:Subject/saml:NameIdentifier", default="", namespaces=SAML11_NS)
            or ""
        ).strip()
        if not name:
            return None

        attributes: Dict[str, Any] = {}
        for attribute in element.findall("saml:AttributeStatement/saml:Attribute", SAML11_NS):
            attr_name = attribute.get("AttributeName")
            if not attr_name:
                continue
            values: List[str] = [
                (v.text or "").strip()
                for v in attribute.findall("saml:AttributeValue", SAML11_NS)
            ]
            attributes[attr_name] = values[0] if len(values) == 1 else values

        conditions = element.find("saml:Conditions", SAML11_NS)
        return Assertion(
            principal_name=name,
            attributes=attributes,
            valid_from=_parse_saml_datetime(
                conditions.get("NotBefore") if conditions is not None else None
            ),
            valid_until=_parse_saml_datetime(
                conditions.get("NotOnOrAfter") if conditions is not None else None
            ),
            authentication_date=_parse_saml_datetime(statement.get("AuthenticationInstant")),
        )


# =============================================================================
# FACTORY
# =============================================================================


_VALIDATORS = {
    ValidationProtocol.CAS1: Cas10TicketValidator,
    ValidationProtocol.CAS2: Cas20ServiceTicketValidator,
    ValidationProtocol.CAS2_PROXY: Cas20ProxyTicketValidator,
    ValidationProtocol.CAS3: Cas30ServiceTicketValidator,
    ValidationProtocol.SAML11: Saml11TicketValidator,
}


def create_ticket_validator(
    protocol: ValidationProtocol,
    server_url_prefix: str,
    http: httpx.Client,
    timeout: float = 10.0,
    accept_any_proxy: bool = False,
    allowed_proxy_chains: FrozenSet[Tuple[str, ...]] = frozenset(),
    saml_tolerance: float = 1.0,
) -> TicketValidator:
    """
    Create the validator for a validation protocol.

    Args:
        protocol: Validation protocol variant
        server_url_prefix: CAS server base URL
        http: HTTP session shared with the REST client
        timeout: Per-request timeout in seconds
        accept_any_proxy: CAS2_PROXY only - accept any proxy chain
        allowed_proxy_chains: CAS2_PROXY only - accepted proxy chains
        saml_tolerance: SAML11 only - clock skew tolerance in seconds

    Returns:
        Configured TicketValidator
    """
    if protocol not in _VALIDATORS:
        raise ConfigurationError(f"Unsupported validation protocol: {protocol}")

    if protocol == ValidationProtocol.CAS2_PROXY:
        return Cas20ProxyTicketValidator(
            server_url_prefix=server_url_prefix,
            http=http,
            timeout=timeout,
            accept_any_proxy=accept_any_proxy,
            allowed_proxy_chains=allowed_proxy_chains,
        )
    if protocol == ValidationProtocol.SAML11:
        return Saml11TicketValidator(
            server_url_prefix=server_url_prefix,
            http=http,
            timeout=timeout,
            tolerance=timedelta(seconds=saml_tolerance),
        )
    return _VALIDATORS[protocol](
        server_url_prefix=server_url_prefix,
        http=http,
        timeout=timeout,
    )
