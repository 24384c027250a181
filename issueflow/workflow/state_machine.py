"""Issue status lifecycle with explicit transitions and guards.

Thin wrapper around the FSM in fsm.py. This module provides:
- IssueStatus enum for type safety
- transition() function that maps a target status to an FSM trigger
- Convenience functions for status queries

Usage:
    from issueflow.workflow.state_machine import transition, IssueStatus

    transition(store, "foo", IssueStatus.VALIDATING, reason="run started")
"""

import logging
from enum import Enum

from issueflow.lib.errors import IssueFlowError
from issueflow.store.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


class IssueStatus(Enum):
    """All valid issue statuses.

    Values match FSM state strings.
    """
    OPEN = "open"
    VALIDATING = "validating"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


# Statuses a completed run ends in
TERMINAL = frozenset({IssueStatus.REJECTED, IssueStatus.RESOLVED, IssueStatus.ARCHIVED})

# Statuses the archive manager accepts
ARCHIVABLE = frozenset({IssueStatus.REJECTED, IssueStatus.RESOLVED})


class InvalidTransition(IssueFlowError):
    """Raised when attempting an invalid status transition."""

    def __init__(self, from_state: str, to_state: IssueStatus, issue_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state} -> {to_state.value}", issue_id)


def parse_status(status_str: str | None) -> IssueStatus | None:
    """Parse a status string into IssueStatus.

    Returns None if status is unknown.
    """
    if status_str is None:
        return None
    for status in IssueStatus:
        if status.value == status_str:
            return status
    return None


def transition(
    store: ArtifactStore,
    issue_id: str,
    to_state: IssueStatus,
    reason: str = "",
    force: bool = False,
) -> None:
    """Transition an issue to a new status with validation.

    Args:
        store: Store holding the issue
        issue_id: Issue to transition
        to_state: Target status
        reason: Optional reason for the transition (for logging)
        force: If True, skip validation. Reserved for explicit operator
            action (e.g. re-opening a terminal issue by hand).

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    from transitions import MachineError
    from issueflow.workflow.fsm import IssueFSM, TRIGGER_FOR

    reason_str = f" ({reason})" if reason else ""

    fsm = IssueFSM(store, issue_id)
    current_state = fsm.state

    if force:
        logger.warning(f"[STATE] {issue_id}: {current_state} -> {to_state.value}{reason_str} (forced)")
        fsm.machine.set_state(to_state.value)
        fsm._save_state()
        return

    # Self-transition is a no-op
    if current_state == to_state.value:
        logger.debug(f"[STATE] {issue_id}: already {to_state.value}, no-op")
        return

    trigger = TRIGGER_FOR.get((current_state, to_state.value))
    if trigger is None:
        raise InvalidTransition(current_state, to_state, issue_id)

    try:
        logger.info(f"[STATE] {issue_id}: {current_state} -> {to_state.value}{reason_str}")
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current_state, to_state, issue_id) from e


def get_status(store: ArtifactStore, issue_id: str) -> IssueStatus | None:
    """Get current issue status.

    Returns None if the stored status is unknown.
    """
    return parse_status(store.status(issue_id))


def can_transition(store: ArtifactStore, issue_id: str, to_state: IssueStatus) -> bool:
    """Check if a transition to the given status is valid."""
    from issueflow.workflow.fsm import TRIGGER_FOR

    current_state = store.status(issue_id)
    if current_state == to_state.value:
        return True
    return (current_state, to_state.value) in TRIGGER_FOR
