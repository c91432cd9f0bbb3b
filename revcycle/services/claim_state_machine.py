"""
Claim Status State Machine.

Provides:
- Valid status transitions
- Transition validation, including the permission each one requires

State Diagram:
    PENDING -> APPROVED | DENIED
    RESUBMITTED -> APPROVED | DENIED
    DENIED -> RESUBMITTED   (applies to the successor claim; the denied
                             original is never mutated)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from revcycle.core.enums import ClaimStatus, DecisionAction, Permission

logger = logging.getLogger(__name__)


class TransitionEvent(str, Enum):
    """Events that trigger state transitions."""

    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"

    @classmethod
    def from_action(cls, action: DecisionAction) -> "TransitionEvent":
        return cls.APPROVE if action == DecisionAction.APPROVE else cls.REJECT


@dataclass
class Transition:
    """Represents a valid state transition."""

    from_status: ClaimStatus
    to_status: ClaimStatus
    event: TransitionEvent
    requires_permission: Optional[Permission] = None


@dataclass
class TransitionContext:
    """Context for a transition attempt."""

    claim_id: str
    current_status: ClaimStatus
    event: TransitionEvent
    triggered_by: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransitionResult:
    """Result of a transition attempt."""

    success: bool
    from_status: ClaimStatus
    to_status: Optional[ClaimStatus] = None
    error: Optional[str] = None
    permission_denied: bool = False
    transition: Optional[Transition] = None


# =============================================================================
# Valid Transitions Definition
# =============================================================================


VALID_TRANSITIONS: list[Transition] = [
    # From PENDING
    Transition(
        from_status=ClaimStatus.PENDING,
        to_status=ClaimStatus.APPROVED,
        event=TransitionEvent.APPROVE,
        requires_permission=Permission.CLAIMS_DECIDE,
    ),
    Transition(
        from_status=ClaimStatus.PENDING,
        to_status=ClaimStatus.DENIED,
        event=TransitionEvent.REJECT,
        requires_permission=Permission.CLAIMS_DECIDE,
    ),

    # From RESUBMITTED
    Transition(
        from_status=ClaimStatus.RESUBMITTED,
        to_status=ClaimStatus.APPROVED,
        event=TransitionEvent.APPROVE,
        requires_permission=Permission.CLAIMS_DECIDE,
    ),
    Transition(
        from_status=ClaimStatus.RESUBMITTED,
        to_status=ClaimStatus.DENIED,
        event=TransitionEvent.REJECT,
        requires_permission=Permission.CLAIMS_DECIDE,
    ),

    # From DENIED
    Transition(
        from_status=ClaimStatus.DENIED,
        to_status=ClaimStatus.RESUBMITTED,
        event=TransitionEvent.RESUBMIT,
        requires_permission=Permission.CLAIMS_CREATE,
    ),
]


# =============================================================================
# State Machine
# =============================================================================


class ClaimStateMachine:
    """
    State machine for claim status transitions.

    Validation only; the ledger applies the resulting status under the
    claim's lock.
    """

    def __init__(self, transitions: Optional[list[Transition]] = None):
        self._transitions: dict[tuple[ClaimStatus, TransitionEvent], Transition] = {}
        self._from_status_map: dict[ClaimStatus, list[Transition]] = {}

        for transition in transitions or VALID_TRANSITIONS:
            self._transitions[(transition.from_status, transition.event)] = transition
            self._from_status_map.setdefault(transition.from_status, []).append(transition)

    def get_valid_transitions(self, status: ClaimStatus) -> list[Transition]:
        """Get all valid transitions from a given status."""
        return self._from_status_map.get(status, [])

    def get_valid_events(self, status: ClaimStatus) -> list[TransitionEvent]:
        """Get all valid events for a given status."""
        return [t.event for t in self.get_valid_transitions(status)]

    def can_transition(self, from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
        """Check if transition from one status to another is valid."""
        return any(t.to_status == to_status for t in self.get_valid_transitions(from_status))

    def get_transition(
        self, from_status: ClaimStatus, event: TransitionEvent
    ) -> Optional[Transition]:
        return self._transitions.get((from_status, event))

    def validate_transition(
        self,
        context: TransitionContext,
        user_permissions: Optional[Iterable[str]] = None,
    ) -> TransitionResult:
        """
        Validate a transition attempt.

        Args:
            context: Transition context with all details
            user_permissions: Caller's permission codes. ``None`` means an
                internal caller whose permissions were checked upstream.

        Returns:
            TransitionResult indicating success/failure
        """
        transition = self.get_transition(context.current_status, context.event)

        if not transition:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=(
                    f"Claim not in a valid state for {context.event.value}: "
                    f"{context.current_status.value}"
                ),
            )

        if transition.requires_permission and user_permissions is not None:
            granted = {str(getattr(p, "value", p)) for p in user_permissions}
            if transition.requires_permission.value not in granted:
                return TransitionResult(
                    success=False,
                    from_status=context.current_status,
                    error=f"Missing required permission: {transition.requires_permission.value}",
                    permission_denied=True,
                )

        return TransitionResult(
            success=True,
            from_status=context.current_status,
            to_status=transition.to_status,
            transition=transition,
        )

    def execute_transition(
        self,
        context: TransitionContext,
        user_permissions: Optional[Iterable[str]] = None,
    ) -> TransitionResult:
        """Validate and log a transition."""
        result = self.validate_transition(context, user_permissions)
        if not result.success:
            logger.warning(f"Transition failed for claim {context.claim_id}: {result.error}")
            return result

        logger.info(
            f"Claim {context.claim_id} transitioned: "
            f"{context.current_status.value} -> {result.to_status.value} "
            f"(event: {context.event.value})"
        )
        return result


def is_terminal_status(status: ClaimStatus) -> bool:
    """Decided claims accept no further decisions."""
    return status in (ClaimStatus.APPROVED, ClaimStatus.DENIED)


# =============================================================================
# Singleton Instance
# =============================================================================


_state_machine: Optional[ClaimStateMachine] = None


def get_claim_state_machine() -> ClaimStateMachine:
    """Get singleton state machine instance."""
    global _state_machine
    if _state_machine is None:
        _state_machine = ClaimStateMachine()
    return _state_machine
