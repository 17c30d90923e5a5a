"""
casbridge Exception Types

Custom exceptions for the CAS ticket exchange and realm layers.
"""

from typing import Optional


class CasBridgeError(Exception):
    """Base exception for all casbridge errors."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class AuthenticationError(CasBridgeError):
    """
    Authentication failed.

    This is the only failure type the realm surfaces to its caller. The
    underlying cause (transport, validation) is chained as ``__cause__``.
    """

    pass


class ConfigurationError(CasBridgeError):
    """
    Configuration is missing or invalid.

    Raised while building a CasConfiguration, or when a remote operation is
    attempted on a client that was never bound to a configuration.
    """

    pass


class ProtocolError(CasBridgeError):
    """
    Protocol-level error.

    This indicates an error in an exchange with the CAS server itself,
    such as an unexpected status code or a malformed response.
    """

    pass


class RemoteAuthError(ProtocolError):
    """
    CAS REST ticket API refused a request.

    Raised when credentials are rejected while creating a TGT, or when the
    TGT is unknown/expired while granting a service ticket.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, code)
        self.status_code = status_code


class RemoteTransportError(RemoteAuthError):
    """
    CAS server could not be reached.

    Network failure, refused connection or request timeout.
    """

    pass


class TicketValidationError(ProtocolError):
    """
    Service ticket validation failed.

    The CAS server rejected the ticket (expired, unknown, wrong service) or
    returned a document that could not be understood.
    """

    pass


class ValidationTransportError(TicketValidationError, RemoteTransportError):
    """
    CAS server could not be reached while validating a service ticket.

    Both a validation failure and a transport failure.
    """

    pass


class InvalidProxyChainError(TicketValidationError):
    """
    Proxy ticket was issued through a proxy chain that is not allowed.
    """

    def __init__(self, proxies: tuple) -> None:
        super().__init__(
            f"Proxy chain not allowed: {' -> '.join(proxies)}",
            code="INVALID_PROXY_CHAIN",
        )
        self.proxies = proxies


class StateError(CasBridgeError):
    """
    Invalid state transition.

    This indicates an attempt to perform a step that is not valid in the
    current authentication attempt state.
    """

    pass


class InvariantViolation(CasBridgeError):
    """
    Attempt invariant was violated.

    The authentication attempt entered a state that breaks a ticket
    lifecycle guarantee (e.g. finished while still holding a TGT).
    """

    pass
