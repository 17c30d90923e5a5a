"""
casbridge CAS REST Client

Client for the CAS REST ticket API.

This module provides:
1. TGT creation from username/password (POST /v1/tickets)
2. Service ticket grant from a TGT (POST /v1/tickets/<TGT>)
3. Service ticket validation through the bound TicketValidator
4. Best-effort TGT destruction (DELETE /v1/tickets/<TGT>)

Every remote call is blocking, carries a bounded timeout and is never
retried. Reconfiguration goes through bind(), which returns a new immutable
client; in-flight calls keep the snapshot they started with.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urljoin

import attrs
import httpx
import structlog
from attrs import field
from returns.result import Failure, Result, Success

from casbridge.core.exceptions import (
    ConfigurationError,
    RemoteAuthError,
    RemoteTransportError,
)
from casbridge.core.types import Assertion, ServiceTicket, TicketGrantingTicket
from casbridge.cas.validation import TicketValidator

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 10.0


@attrs.define(frozen=True)
class CasRestClient:
    """
    CAS REST ticket API client.

    Example:
        client = create_cas_rest_client().bind(
            cas_rest_ticket_url="https://cas.example.com/cas/v1/tickets",
            validator=validator,
        )
        tgt = client.create_ticket_granting_ticket("jdoe", "secret")
        try:
            st = client.grant_service_ticket(tgt, "https://app.example.com/")
            assertion = client.validate_service_ticket(st, "https://app.example.com/")
        finally:
            client.destroy_ticket_granting_ticket(tgt)
    """

    http: httpx.Client = field(repr=False)
    cas_rest_ticket_url: Optional[str] = None
    ticket_validator: Optional[TicketValidator] = field(default=None, repr=False)
    timeout: float = DEFAULT_TIMEOUT
    # TLS setting the HTTP session was built with
    verify_tls: bool = True
    _transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def is_bound(self) -> bool:
        """True when a ticket URL and a validator are configured."""
        return bool(self.cas_rest_ticket_url) and self.ticket_validator is not None

    def with_verify_tls(self, verify_tls: bool) -> CasRestClient:
        """
        Return an unbound client whose HTTP session verifies TLS as requested.

        The session's TLS setting is fixed when it is built, so a different
        setting needs a new session. This client and its session are left
        unchanged for calls still using them.
        """
        if verify_tls == self.verify_tls:
            return self
        self._logger.info("cas_http_session_rebuilt", verify_tls=verify_tls)
        return create_cas_rest_client(
            timeout=self.timeout,
            verify_tls=verify_tls,
            transport=self._transport,
        )

    def bind(
        self,
        cas_rest_ticket_url: str,
        validator: TicketValidator,
        timeout: Optional[float] = None,
    ) -> CasRestClient:
        """
        Return a client bound to a ticket URL and validator.

        The HTTP session is shared; this client is left unchanged.
        """
        return attrs.evolve(
            self,
            cas_rest_ticket_url=cas_rest_ticket_url,
            ticket_validator=validator,
            timeout=self.timeout if timeout is None else timeout,
        )

    def _require_bound(self) -> None:
        if not self.is_bound:
            raise ConfigurationError("CAS REST client is not configured")

    # =========================================================================
    # TGT
    # =========================================================================

    def create_ticket_granting_ticket(
        self,
        username: str,
        password: str,
    ) -> TicketGrantingTicket:
        """
        Exchange credentials for a TGT.

        Returns:
            TicketGrantingTicket pointing at the TGT resource

        Raises:
            RemoteAuthError: credentials rejected or unexpected response
            RemoteTransportError: CAS server unreachable or timed out
        """
        self._require_bound()
        url = self.cas_rest_ticket_url

        response = self._request(
            "POST",
            url,
            data={"username": username, "password": password},
            step="create_tgt",
        )

        if response.status_code != 201:
            raise RemoteAuthError(
                f"CAS refused TGT creation for '{username}' (HTTP {response.status_code})",
                code="TGT_REJECTED",
                status_code=response.status_code,
            )

        location = response.headers.get("Location")
        if not location:
            raise RemoteAuthError(
                "CAS created a TGT without a Location header",
                code="TGT_NO_LOCATION",
                status_code=response.status_code,
            )

        tgt = TicketGrantingTicket(location=urljoin(url, location))
        self._logger.debug("tgt_created", username=username)
        return tgt

    def destroy_ticket_granting_ticket(
        self,
        tgt: TicketGrantingTicket,
    ) -> Result[bool, str]:
        """
        Revoke a TGT on the CAS server.

        Never raises. Success(True) when CAS confirmed the deletion,
        Success(False) when the TGT was already gone, Failure(reason)
        when the deletion could not be confirmed.
        """
        try:
            response = self.http.delete(tgt.location, timeout=self.timeout)
        except httpx.HTTPError as e:
            return Failure(f"TGT destroy request failed: {e}")
        except Exception as e:
            self._logger.warning(
                "tgt_destroy_unexpected_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return Failure(f"TGT destroy raised {type(e).__name__}: {e}")

        if response.status_code in (200, 204):
            return Success(True)
        if response.status_code == 404:
            return Success(False)
        return Failure(f"TGT destroy returned HTTP {response.status_code}")

    # =========================================================================
    # SERVICE TICKET
    # =========================================================================

    def grant_service_ticket(
        self,
        tgt: TicketGrantingTicket,
        service_url: str,
    ) -> ServiceTicket:
        """
        Exchange a live TGT for a service ticket scoped to service_url.

        Raises:
            RemoteAuthError: TGT unknown/expired or unexpected response
            RemoteTransportError: CAS server unreachable or timed out
        """
        self._require_bound()

        response = self._request(
            "POST",
            tgt.location,
            data={"service": service_url},
            step="grant_st",
        )

        if response.status_code != 200:
            raise RemoteAuthError(
                f"CAS refused service ticket grant (HTTP {response.status_code})",
                code="ST_REJECTED",
                status_code=response.status_code,
            )

        value = response.text.strip()
        if not value:
            raise RemoteAuthError(
                "CAS returned an empty service ticket",
                code="ST_EMPTY",
                status_code=response.status_code,
            )

        self._logger.debug("service_ticket_granted", service=service_url)
        return ServiceTicket(value=value, service=service_url)

    def validate_service_ticket(
        self,
        service_ticket: ServiceTicket,
        service_url: str,
    ) -> Assertion:
        """
        Validate a service ticket through the bound validator.

        Raises:
            TicketValidationError: validation failed
        """
        self._require_bound()
        return self.ticket_validator.validate(str(service_ticket), service_url)

    # =========================================================================
    # HTTP
    # =========================================================================

    def _request(self, method: str, url: str, step: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.http.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTransportError(
                f"Timed out calling CAS REST API ({step})", code="TIMEOUT"
            ) from e
        except httpx.RequestError as e:
            raise RemoteTransportError(
                f"Error calling CAS REST API ({step}): {e}", code="TRANSPORT_ERROR"
            ) from e

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.http.close()

    def __enter__(self) -> CasRestClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_cas_rest_client(
    timeout: float = DEFAULT_TIMEOUT,
    verify_tls: bool = True,
    transport: Optional[httpx.BaseTransport] = None,
) -> CasRestClient:
    """
    Create an unbound CAS REST client with its own HTTP session.

    Args:
        timeout: Per-request timeout in seconds
        verify_tls: Verify the CAS server certificate
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests)

    Returns:
        CasRestClient ready to be bound by a realm
    """
    http = httpx.Client(
        timeout=timeout,
        verify=verify_tls,
        transport=transport,
        follow_redirects=False,
    )
    return CasRestClient(
        http=http,
        timeout=timeout,
        verify_tls=verify_tls,
        transport=transport,
    )
