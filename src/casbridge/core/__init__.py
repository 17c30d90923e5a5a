"""
casbridge Core Module

Provides foundational types and abstractions used by the CAS client and realm.

Components:
- types: Credentials, tickets, assertions and host-facing result types
- state_machine: Base state machine with invariant checking
- exceptions: Custom exception types
"""

from casbridge.core.types import (
    ValidationProtocol,
    UsernamePasswordCredentials,
    TicketGrantingTicket,
    ServiceTicket,
    Assertion,
    PrincipalCollection,
    AuthenticationInfo,
    AuthorizationInfo,
)
from casbridge.core.state_machine import StateMachineBase, Transition
from casbridge.core.exceptions import (
    CasBridgeError,
    AuthenticationError,
    ConfigurationError,
    ProtocolError,
    RemoteAuthError,
    RemoteTransportError,
    TicketValidationError,
    ValidationTransportError,
    InvalidProxyChainError,
)

__all__ = [
    # Types
    "ValidationProtocol",
    "UsernamePasswordCredentials",
    "TicketGrantingTicket",
    "ServiceTicket",
    "Assertion",
    "PrincipalCollection",
    "AuthenticationInfo",
    "AuthorizationInfo",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "CasBridgeError",
    "AuthenticationError",
    "ConfigurationError",
    "ProtocolError",
    "RemoteAuthError",
    "RemoteTransportError",
    "TicketValidationError",
    "ValidationTransportError",
    "InvalidProxyChainError",
]
