"""Work unit status state machine using the transitions library.

Usage:
    from trackd.workflow.fsm import WorkUnitFSM

    fsm = WorkUnitFSM(unit)
    fsm.start()    # planning -> in_progress
    fsm.finish()   # in_progress -> completed
"""

import logging
from typing import Callable

from transitions import Machine

from trackd.lib.models import WorkUnit, WorkUnitStatus

logger = logging.getLogger(__name__)


STATES = [s.value for s in WorkUnitStatus]

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Work begins (or resumes after a block, or reopens after completion)
    {"trigger": "start", "source": "planning", "dest": "in_progress"},
    {"trigger": "start", "source": "blocked", "dest": "in_progress"},
    {"trigger": "start", "source": "completed", "dest": "in_progress"},

    # All tasks done
    {"trigger": "finish", "source": "in_progress", "dest": "completed"},
    {"trigger": "finish", "source": "planning", "dest": "completed"},

    # Blocked on something external
    {"trigger": "block", "source": "planning", "dest": "blocked"},
    {"trigger": "block", "source": "in_progress", "dest": "blocked"},

    # Abandon
    {"trigger": "cancel", "source": "planning", "dest": "cancelled"},
    {"trigger": "cancel", "source": "in_progress", "dest": "cancelled"},
    {"trigger": "cancel", "source": "blocked", "dest": "cancelled"},

    # Work was rolled back
    {"trigger": "revert", "source": "planning", "dest": "reverted"},
    {"trigger": "revert", "source": "in_progress", "dest": "reverted"},
    {"trigger": "revert", "source": "completed", "dest": "reverted"},
    {"trigger": "revert", "source": "blocked", "dest": "reverted"},
    {"trigger": "revert", "source": "cancelled", "dest": "reverted"},

    # Back to the drawing board
    {"trigger": "replan", "source": "in_progress", "dest": "planning"},
    {"trigger": "replan", "source": "blocked", "dest": "planning"},
    {"trigger": "replan", "source": "cancelled", "dest": "planning"},
    {"trigger": "replan", "source": "reverted", "dest": "planning"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class WorkUnitFSM:
    """State machine over a work unit's status.

    Holds the status in memory only; persisting the result is the caller's
    job (via the store), so an invalid trigger never touches disk.
    """

    def __init__(self, unit: WorkUnit, on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            unit: Work unit whose current status seeds the machine
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions
        """
        self.unit_id = unit.id
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=unit.status.value,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    @property
    def status(self) -> WorkUnitStatus:
        return WorkUnitStatus(self.state)

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.debug(f"[FSM] {self.unit_id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)
