"""
casbridge CAS Authenticating Realm

Authentication realm that checks a username/password pair against a CAS
server through its REST ticket API.

Flow of one authenticate() call:
1. Create a TGT from the credentials
2. Grant a service ticket for the configured service URL
3. Validate the service ticket into an assertion
4. Build AuthenticationInfo (principal name + attributes, ST as credentials)
5. Destroy the TGT, whatever happened in 1-4

The realm answers None ("not applicable") when it is not configured, has no
REST client, or gets no usable credentials, so the host can fall through to
other realms. Every remote failure surfaces as AuthenticationError with the
original exception chained as its cause.

Configuration is held as a single immutable snapshot (configuration + bound
REST client). configure() swaps the snapshot in one assignment; each
authenticate() call reads it once and uses it to the end.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Dict, List, Mapping, Optional, Tuple

import attrs
import httpx
import structlog
from returns.result import Failure, Result, Success

from casbridge.cas.rest_client import CasRestClient, create_cas_rest_client
from casbridge.cas.types import (
    AttemptContext,
    AttemptState,
    ServiceTicketGranted,
    StepFailed,
    TGTCreated,
    TGTReleased,
    TicketValidated,
    assertion_requires_service_ticket,
    done_requires_released_tgt,
    service_ticket_requires_tgt,
)
from casbridge.cas.validation import create_ticket_validator
from casbridge.core.exceptions import (
    AuthenticationError,
    InvariantViolation,
    RemoteTransportError,
    StateError,
    TicketValidationError,
)
from casbridge.core.state_machine import StateMachineBase, TransitionEntry
from casbridge.core.types import (
    Assertion,
    AuthenticationInfo,
    AuthorizationInfo,
    PrincipalCollection,
    ServiceTicket,
    TicketGrantingTicket,
    UsernamePasswordCredentials,
)
from casbridge.realm.authorization import authorization_from_attributes
from casbridge.realm.config import CasConfiguration, ConfigurationSource

logger = structlog.get_logger()

ROLE = "CasAuthenticatingRealm"


# =============================================================================
# AUTHENTICATION ATTEMPT STATE MACHINE
# =============================================================================


@attrs.define
class AuthenticationAttemptMachine(StateMachineBase[AttemptState, Any, AttemptContext]):
    """
    State machine of one authenticate() call.

    States:
    - IDLE: Nothing sent yet
    - TGT_CREATED: CAS holds a TGT for this attempt
    - ST_GRANTED: Service ticket obtained
    - VALIDATED: Assertion obtained
    - DONE: Succeeded and TGT released
    - FAILED: A step failed, or the attempt was abandoned
    """

    def initial_state(self) -> AttemptState:
        return AttemptState.IDLE

    def transition_table(self) -> Dict[Tuple[AttemptState, type], TransitionEntry]:
        table: Dict[Tuple[AttemptState, type], TransitionEntry] = {
            (AttemptState.IDLE, TGTCreated): (
                AttemptState.TGT_CREATED,
                self._handle_tgt_created,
            ),
            (AttemptState.TGT_CREATED, ServiceTicketGranted): (
                AttemptState.ST_GRANTED,
                self._handle_service_ticket_granted,
            ),
            (AttemptState.ST_GRANTED, TicketValidated): (
                AttemptState.VALIDATED,
                self._handle_ticket_validated,
            ),
            (AttemptState.VALIDATED, TGTReleased): (
                AttemptState.DONE,
                self._handle_tgt_released,
            ),
            (AttemptState.FAILED, TGTReleased): (
                AttemptState.FAILED,
                self._handle_tgt_released,
            ),
        }
        for state in (
            AttemptState.IDLE,
            AttemptState.TGT_CREATED,
            AttemptState.ST_GRANTED,
            AttemptState.VALIDATED,
        ):
            table[(state, StepFailed)] = (AttemptState.FAILED, self._handle_step_failed)
        # Caller abandoned the attempt mid-flight (e.g. KeyboardInterrupt)
        for state in (AttemptState.TGT_CREATED, AttemptState.ST_GRANTED):
            table[(state, TGTReleased)] = (AttemptState.FAILED, self._handle_abandoned)
        return table

    @staticmethod
    def _handle_tgt_created(event: TGTCreated, ctx: AttemptContext) -> AttemptContext:
        return attrs.evolve(ctx, tgt=event.tgt)

    @staticmethod
    def _handle_service_ticket_granted(
        event: ServiceTicketGranted, ctx: AttemptContext
    ) -> AttemptContext:
        return attrs.evolve(ctx, service_ticket=event.service_ticket)

    @staticmethod
    def _handle_ticket_validated(event: TicketValidated, ctx: AttemptContext) -> AttemptContext:
        return attrs.evolve(ctx, assertion=event.assertion)

    @staticmethod
    def _handle_step_failed(event: StepFailed, ctx: AttemptContext) -> AttemptContext:
        return attrs.evolve(
            ctx,
            failed_step=event.step,
            error_type=event.error_type,
            error_message=event.error_message,
        )

    @staticmethod
    def _handle_tgt_released(event: TGTReleased, ctx: AttemptContext) -> AttemptContext:
        return attrs.evolve(ctx, tgt_released=True, tgt_destroyed=event.destroyed)

    @staticmethod
    def _handle_abandoned(event: TGTReleased, ctx: AttemptContext) -> AttemptContext:
        return attrs.evolve(
            ctx,
            tgt_released=True,
            tgt_destroyed=event.destroyed,
            error_type=ctx.error_type or "Abandoned",
            error_message=ctx.error_message or "Authentication attempt abandoned",
        )


def new_attempt(username: str, service_url: str) -> AuthenticationAttemptMachine:
    """Create an attempt state machine with the ticket lifecycle invariants."""
    machine = AuthenticationAttemptMachine(
        _state=AttemptState.IDLE,
        _context=AttemptContext(username=username, service_url=service_url),
    )
    machine.add_invariant("service_ticket_requires_tgt", service_ticket_requires_tgt)
    machine.add_invariant("assertion_requires_service_ticket", assertion_requires_service_ticket)
    machine.add_invariant("done_requires_released_tgt", done_requires_released_tgt)
    return machine


# =============================================================================
# REALM
# =============================================================================


@attrs.define(frozen=True)
class RealmSnapshot:
    """Configuration and the REST client bound to it, swapped as one value."""

    configuration: CasConfiguration
    client: Optional[CasRestClient] = None


@attrs.define
class CasAuthenticatingRealm:
    """
    CAS authentication realm using the CAS REST ticket API.

    Example:
        realm = CasAuthenticatingRealm(rest_client=create_cas_rest_client())
        realm.configure(CasConfiguration(
            cas_server_url_prefix="https://cas.example.com/cas",
            cas_service_url="https://repo.example.com/",
            role_attribute_names={"roles"},
        ))
        info = realm.authenticate(UsernamePasswordCredentials("jdoe", "secret"))
        if info is not None:
            roles = realm.authorize(info.principals).roles
    """

    rest_client: Optional[CasRestClient] = None
    configuration_source: Optional[ConfigurationSource] = None
    name: str = ROLE

    _snapshot: Optional[RealmSnapshot] = None
    _attempts: threading.local = attrs.Factory(threading.local)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self) -> None:
        """Configure the realm from its configuration source, if any."""
        if self.configuration_source is None:
            return
        self.configure(self.configuration_source.get_configuration())

    def configure(self, config: Optional[CasConfiguration]) -> None:
        """
        Apply a configuration.

        No-op when config is None. The new snapshot replaces the previous one
        in a single assignment. A change of verify_tls builds a new HTTP
        session; calls in flight keep the previous one.
        """
        if config is None:
            return

        client: Optional[CasRestClient] = None
        if self.rest_client is not None:
            self.rest_client = self.rest_client.with_verify_tls(config.verify_tls)
            validator = create_ticket_validator(
                config.validation_protocol,
                server_url_prefix=config.cas_server_url_prefix,
                http=self.rest_client.http,
                timeout=config.request_timeout,
                accept_any_proxy=config.accept_any_proxy,
                allowed_proxy_chains=config.allowed_proxy_chains,
                saml_tolerance=config.saml_tolerance,
            )
            client = self.rest_client.bind(
                cas_rest_ticket_url=config.cas_rest_ticket_url,
                validator=validator,
                timeout=config.request_timeout,
            )
        else:
            self._logger.warning("cas_realm_without_rest_client", realm=self.name)

        self._snapshot = RealmSnapshot(configuration=config, client=client)

        self._logger.info(
            "cas_realm_configured",
            realm=self.name,
            cas_server_url=config.cas_server_url_prefix,
            validation_protocol=config.validation_protocol.name,
        )

    @property
    def is_configured(self) -> bool:
        return self._snapshot is not None

    @property
    def configuration(self) -> Optional[CasConfiguration]:
        snapshot = self._snapshot
        return snapshot.configuration if snapshot is not None else None

    def supports(self, credentials: Any) -> bool:
        """Only username/password credentials are handled by this realm."""
        return isinstance(credentials, UsernamePasswordCredentials)

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def authenticate(self, credentials: Any) -> Optional[AuthenticationInfo]:
        """
        Authenticate credentials against the CAS server.

        Returns:
            AuthenticationInfo on success, None when the realm does not apply

        Raises:
            AuthenticationError: CAS rejected the credentials, the ticket
                did not validate, or the server could not be reached
        """
        snapshot = self._snapshot
        if snapshot is None or snapshot.client is None or credentials is None:
            return None
        if not self.supports(credentials) or not credentials.is_complete:
            self._logger.debug("authenticate_skipped_incomplete_credentials", realm=self.name)
            return None

        client = snapshot.client
        service_url = snapshot.configuration.cas_service_url
        username = credentials.username

        attempt = new_attempt(username, service_url)
        self._attempts.current = attempt

        self._logger.debug("authenticate_start", username=username, realm=self.name)

        tgt: Optional[TicketGrantingTicket] = None
        try:
            tgt = client.create_ticket_granting_ticket(username, credentials.password)
            self._advance(attempt, TGTCreated(tgt=tgt))

            service_ticket = client.grant_service_ticket(tgt, service_url)
            self._advance(attempt, ServiceTicketGranted(service_ticket=service_ticket))

            assertion = client.validate_service_ticket(service_ticket, service_url)
            self._advance(attempt, TicketValidated(assertion=assertion))

            info = self.create_authentication_info(service_ticket, assertion)

        except TicketValidationError as e:
            self._logger.error(
                "service_ticket_validation_failed",
                username=username,
                error=str(e),
                code=e.code,
                transport=isinstance(e, RemoteTransportError),
            )
            self._record_failure(attempt, e)
            raise AuthenticationError(
                f"CAS service ticket validation failed for '{username}'", code=e.code
            ) from e

        except Exception as e:
            self._logger.error(
                "cas_rest_call_failed",
                username=username,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._record_failure(attempt, e)
            raise AuthenticationError(
                f"CAS REST ticket API call failed for '{username}'",
                code=getattr(e, "code", None),
            ) from e

        finally:
            if tgt is not None:
                self._release_tgt(client, tgt, attempt)

        self._logger.info(
            "authenticate_success",
            username=username,
            principal=assertion.principal_name,
            realm=self.name,
        )
        return info

    def create_authentication_info(
        self,
        service_ticket: ServiceTicket,
        assertion: Assertion,
    ) -> AuthenticationInfo:
        """Principal name and attributes keyed under this realm; ST as credentials."""
        principals = PrincipalCollection(
            realm_name=self.name,
            principals=(assertion.principal_name, dict(assertion.attributes)),
        )
        return AuthenticationInfo(principals=principals, credentials=str(service_ticket))

    @staticmethod
    def _advance(attempt: AuthenticationAttemptMachine, event: Any) -> None:
        result = attempt.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())

    @staticmethod
    def _record_failure(attempt: AuthenticationAttemptMachine, error: Exception) -> None:
        attempt.process_event(
            StepFailed(
                error_type=type(error).__name__,
                error_message=str(error),
                step=attempt.state,
            )
        )

    def _release_tgt(
        self,
        client: CasRestClient,
        tgt: TicketGrantingTicket,
        attempt: AuthenticationAttemptMachine,
    ) -> None:
        """
        Destroy the TGT. Errors are logged and discarded; they never replace
        the outcome of the authentication itself.
        """
        try:
            result: Result[bool, str] = client.destroy_ticket_granting_ticket(tgt)
        except Exception as e:
            self._logger.warning(
                "tgt_destroy_unexpected_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            result = Failure(f"{type(e).__name__}: {e}")

        if isinstance(result, Success):
            destroyed = result.unwrap()
            detail = "destroyed" if destroyed else "already gone"
            self._logger.debug("tgt_released", destroyed=destroyed)
        else:
            destroyed = False
            detail = result.failure()
            self._logger.debug("tgt_destroy_failed", reason=detail)

        try:
            attempt.process_event(TGTReleased(destroyed=destroyed, detail=detail))
        except InvariantViolation as e:
            self._logger.warning("tgt_release_invariant_violated", error=str(e))

    def last_attempt_trace(self) -> List[Dict[str, Any]]:
        """Transitions of the calling thread's most recent attempt."""
        attempt = getattr(self._attempts, "current", None)
        if attempt is None:
            return []
        return [t.to_dict() for t in attempt.get_trace()]

    def export_last_attempt_trace_json(self) -> str:
        """
        Export the calling thread's most recent attempt as JSON.

        Tickets and passwords are never part of the export.
        """
        attempt = getattr(self._attempts, "current", None)
        if attempt is None:
            return json.dumps({"realm": self.name, "attempt": None}, indent=2)
        return json.dumps(
            {"realm": self.name, "attempt": json.loads(attempt.export_trace_json())},
            indent=2,
        )

    def last_attempt_state(self) -> Optional[AttemptState]:
        """Final state of the calling thread's most recent attempt."""
        attempt = getattr(self._attempts, "current", None)
        return attempt.state if attempt is not None else None

    def last_attempt_context(self) -> Optional[AttemptContext]:
        """Context of the calling thread's most recent attempt."""
        attempt = getattr(self._attempts, "current", None)
        return attempt.context if attempt is not None else None

    # =========================================================================
    # AUTHORIZATION
    # =========================================================================

    def authorize(self, principals: Optional[PrincipalCollection]) -> Optional[AuthorizationInfo]:
        """
        Derive roles and permissions from the CAS attributes.

        Returns None when the realm is not configured or no principal in
        the collection belongs to this realm.
        """
        snapshot = self._snapshot
        if snapshot is None or principals is None:
            return None

        own = principals.from_realm(self.name)
        if not own:
            return None

        attributes = next((p for p in own if isinstance(p, Mapping)), {})
        config = snapshot.configuration
        return authorization_from_attributes(
            attributes,
            role_attribute_names=config.role_attribute_names,
            default_roles=config.default_roles,
            permission_attribute_names=config.permission_attribute_names,
            default_permissions=config.default_permissions,
        )


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_cas_realm(
    config: Optional[CasConfiguration] = None,
    configuration_source: Optional[ConfigurationSource] = None,
    transport: Optional[httpx.BaseTransport] = None,
    name: str = ROLE,
) -> CasAuthenticatingRealm:
    """
    Create a CAS realm with its own REST client.

    Args:
        config: Configuration to apply immediately (takes precedence over source)
        configuration_source: Source used by initialize() when config is None
        transport: Optional httpx transport for the REST client
        name: Realm name principals are attributed to

    Returns:
        CasAuthenticatingRealm, configured when a configuration was available
    """
    if config is None and configuration_source is not None:
        config = configuration_source.get_configuration()

    rest_client = create_cas_rest_client(
        timeout=config.request_timeout if config else 10.0,
        verify_tls=config.verify_tls if config else True,
        transport=transport,
    )
    realm = CasAuthenticatingRealm(
        rest_client=rest_client,
        configuration_source=configuration_source,
        name=name,
    )
    realm.configure(config)
    return realm
