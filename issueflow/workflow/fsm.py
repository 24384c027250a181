"""Issue status state machine using the transitions library.

Only explicit triggers are allowed; every transition is persisted to the
issue's meta.env through the ArtifactStore and logged.

Usage:
    from issueflow.workflow.fsm import IssueFSM

    fsm = IssueFSM(store, "foo")
    fsm.start_validation()  # open -> validating
    fsm.accept()            # validating -> in_progress
    fsm.resolve()           # in_progress -> resolved
"""

import logging
from typing import Callable

from transitions import Machine

from issueflow.store.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


# State values must match IssueStatus enum values
STATES = [
    "open",
    "validating",
    "rejected",
    "in_progress",
    "resolved",
    "archived",
]

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Controller picks the issue up
    {"trigger": "start_validation", "source": "open", "dest": "validating"},

    # Validation outcome
    {"trigger": "accept", "source": "validating", "dest": "in_progress"},
    {"trigger": "reject", "source": "validating", "dest": "rejected"},

    # Finalization on the full path
    {"trigger": "resolve", "source": "in_progress", "dest": "resolved"},

    # Relocation into the archive store
    {"trigger": "archive", "source": "rejected", "dest": "archived"},
    {"trigger": "archive", "source": "resolved", "dest": "archived"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:  # First trigger wins for a given source->dest
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class IssueFSM:
    """State machine for one issue's status.

    Loads the initial state from the store and persists every change back
    to it. Persistence failures propagate to the caller.
    """

    def __init__(self, store: ArtifactStore, issue_id: str,
                 on_transition: Callable[[str, str, str], None] | None = None):
        """Initialize FSM for an issue.

        Args:
            store: Store holding the issue
            issue_id: Issue to manage
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions
        """
        self.store = store
        self.issue_id = issue_id
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=store.status(issue_id),
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def _save_state(self) -> None:
        self.store.update_meta(self.issue_id, {"STATUS": self.state})

    def on_state_change(self, event) -> None:
        """Callback after any state transition.

        Persists state to disk and logs the transition.
        """
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.issue_id}: {from_state} -> {to_state} ({trigger})")

        self._save_state()

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available in current state."""
        return self.machine.get_triggers(self.state)
