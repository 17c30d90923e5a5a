"""
casbridge CAS Module

Client side of the CAS REST ticket API and service ticket validation.

Components:
- types: Authentication attempt states, context and events
- rest_client: TGT creation, ST grant, TGT destruction
- validation: CAS 1.0 / 2.0 / 3.0 and SAML 1.1 ticket validators
"""

from casbridge.cas.types import (
    AttemptState,
    AttemptContext,
    TGTCreated,
    ServiceTicketGranted,
    TicketValidated,
    StepFailed,
    TGTReleased,
)
from casbridge.cas.rest_client import CasRestClient, create_cas_rest_client
from casbridge.cas.validation import (
    TicketValidator,
    Cas10TicketValidator,
    Cas20ServiceTicketValidator,
    Cas20ProxyTicketValidator,
    Cas30ServiceTicketValidator,
    Saml11TicketValidator,
    create_ticket_validator,
)

__all__ = [
    # Attempt state machine
    "AttemptState",
    "AttemptContext",
    "TGTCreated",
    "ServiceTicketGranted",
    "TicketValidated",
    "StepFailed",
    "TGTReleased",
    # REST client
    "CasRestClient",
    "create_cas_rest_client",
    # Validators
    "TicketValidator",
    "Cas10TicketValidator",
    "Cas20ServiceTicketValidator",
    "Cas20ProxyTicketValidator",
    "Cas30ServiceTicketValidator",
    "Saml11TicketValidator",
    "create_ticket_validator",
]
