"""Status transitions for work units.

Thin layer over the FSM in fsm.py:
- transition() validates an explicit status change and returns the updated unit
- status_for_progress() derives the status implied by plan progress

Usage:
    from trackd.workflow.state_machine import transition

    unit = transition(unit, WorkUnitStatus.BLOCKED, reason="waiting on API keys")
    store.save(unit)
"""

import logging

from transitions import MachineError

from trackd.lib.errors import InvalidTransition
from trackd.lib.models import WorkUnit, WorkUnitStatus
from trackd.lib.progress import Progress
from trackd.workflow.fsm import STATES, TRIGGER_FOR, WorkUnitFSM

logger = logging.getLogger(__name__)

# Statuses whose value follows plan progress; the rest are only changed explicitly
PROGRESS_DRIVEN = (WorkUnitStatus.PLANNING, WorkUnitStatus.IN_PROGRESS, WorkUnitStatus.COMPLETED)


def transition(
    unit: WorkUnit,
    to_status: WorkUnitStatus,
    reason: str = "",
    force: bool = False,
) -> WorkUnit:
    """Return unit moved to to_status, validating the transition.

    Args:
        unit: Work unit to transition
        to_status: Target status
        reason: Optional reason for the transition (for logging)
        force: If True, skip validation

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    current = unit.status
    reason_str = f" ({reason})" if reason else ""

    if force:
        logger.info(f"[STATE] {unit.id}: {current.value} -> {to_status.value}{reason_str} (forced)")
        return unit.with_status(to_status)

    # Self-transition is a no-op
    if current == to_status:
        logger.debug(f"[STATE] {unit.id}: already {to_status.value}, no-op")
        return unit

    trigger = TRIGGER_FOR.get((current.value, to_status.value))
    if trigger is None:
        raise InvalidTransition(current.value, to_status.value, unit.id)

    fsm = WorkUnitFSM(unit)
    try:
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current.value, to_status.value, unit.id) from e

    logger.info(f"[STATE] {unit.id}: {current.value} -> {fsm.state}{reason_str}")
    return unit.with_status(fsm.status)


def can_transition(unit: WorkUnit, to_status: WorkUnitStatus) -> bool:
    """Check if a transition to the given status is valid."""
    if unit.status == to_status:
        return True
    return (unit.status.value, to_status.value) in TRIGGER_FOR


def allowed_targets(status: WorkUnitStatus) -> list[WorkUnitStatus]:
    """Statuses reachable from status in one explicit transition."""
    return [WorkUnitStatus(dest) for dest in STATES if (status.value, dest) in TRIGGER_FOR]


def status_for_progress(current: WorkUnitStatus, progress: Progress) -> WorkUnitStatus:
    """Status implied by plan progress.

    - first completed leaf moves planning to in_progress
    - all leaves complete (at least one) means completed
    - an unchecked leaf reopens a completed unit
    Blocked, cancelled and reverted units are left alone.
    """
    if current not in PROGRESS_DRIVEN:
        return current
    if progress.total_tasks > 0 and progress.completed_tasks == progress.total_tasks:
        return WorkUnitStatus.COMPLETED
    if current == WorkUnitStatus.COMPLETED and progress.total_tasks > 0:
        return WorkUnitStatus.IN_PROGRESS
    if current == WorkUnitStatus.PLANNING and progress.completed_tasks > 0:
        return WorkUnitStatus.IN_PROGRESS
    return current
