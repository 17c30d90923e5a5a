"""
casbridge CAS Types

States, context and events of a single CAS REST authentication attempt.

Attempt lifecycle:
    IDLE -> TGT_CREATED -> ST_GRANTED -> VALIDATED -> DONE
    any non-terminal state -> FAILED

The TGT is released (destroyed on the server) from VALIDATED and FAILED.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Optional

import attrs
from attrs import field

from casbridge.core.types import Assertion, ServiceTicket, TicketGrantingTicket


# =============================================================================
# ATTEMPT STATE MACHINE
# =============================================================================


class AttemptState(Enum):
    """Authentication attempt states."""

    IDLE = auto()
    TGT_CREATED = auto()
    ST_GRANTED = auto()
    VALIDATED = auto()
    DONE = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptState.DONE, AttemptState.FAILED)


@attrs.define(frozen=True, slots=True)
class AttemptContext:
    """
    Context of one authentication attempt.

    Exclusively owned by the in-flight attempt; never shared.
    """

    username: str
    service_url: str
    tgt: Optional[TicketGrantingTicket] = field(default=None, repr=False)
    service_ticket: Optional[ServiceTicket] = field(default=None, repr=False)
    assertion: Optional[Assertion] = None
    tgt_released: bool = False
    tgt_destroyed: bool = False
    failed_step: Optional[AttemptState] = None
    error_type: str = ""
    error_message: str = ""

    @property
    def holds_tgt(self) -> bool:
        """True while a TGT exists that has not been released yet."""
        return self.tgt is not None and not self.tgt_released


# =============================================================================
# EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class TGTCreated:
    """CAS accepted the credentials and created a TGT."""

    tgt: TicketGrantingTicket = field(repr=False)


@attrs.define(frozen=True, slots=True)
class ServiceTicketGranted:
    """CAS granted a service ticket from the TGT."""

    service_ticket: ServiceTicket = field(repr=False)


@attrs.define(frozen=True, slots=True)
class TicketValidated:
    """The service ticket was validated into an assertion."""

    assertion: Assertion


@attrs.define(frozen=True, slots=True)
class StepFailed:
    """A remote step failed while the attempt was in state step."""

    error_type: str
    error_message: str
    step: Optional[AttemptState] = None


@attrs.define(frozen=True, slots=True)
class TGTReleased:
    """Best-effort TGT destruction was attempted."""

    destroyed: bool
    detail: str = ""


# =============================================================================
# INVARIANTS
# =============================================================================


def service_ticket_requires_tgt(state: AttemptState, ctx: AttemptContext) -> bool:
    """A service ticket can only exist when derived from a TGT."""
    if state in (AttemptState.ST_GRANTED, AttemptState.VALIDATED):
        return ctx.tgt is not None and ctx.service_ticket is not None
    return True


def assertion_requires_service_ticket(state: AttemptState, ctx: AttemptContext) -> bool:
    """An assertion is only produced by validating a service ticket."""
    if ctx.assertion is not None:
        return ctx.service_ticket is not None
    return True


def done_requires_released_tgt(state: AttemptState, ctx: AttemptContext) -> bool:
    """A successful attempt never finishes while still holding its TGT."""
    if state == AttemptState.DONE:
        return ctx.tgt is not None and ctx.tgt_released and ctx.assertion is not None
    return True
