"""
trackd plan - Edit a work unit's plan from the command line.

plan.md stays hand-editable; these commands are a convenience for agents
and scripts that should not rewrite markdown themselves.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.models import WorkUnitStatus
from trackd.lib.operations import add_phase, add_task
from trackd.lib.planparse import format_task_path


def _parse_phase_number(text: str) -> int:
    try:
        number = int(text)
    except ValueError:
        raise ValueError(f"Invalid phase number '{text}'") from None
    if number < 1:
        raise ValueError(f"Invalid phase number '{text}'")
    return number - 1


def _parse_parent(text: str | None) -> tuple[int, ...]:
    """--parent is a task path inside the phase, e.g. '2' or '2.1'."""
    if not text:
        return ()
    try:
        numbers = [int(p) for p in text.split(".")]
    except ValueError:
        raise ValueError(f"Invalid parent path '{text}'") from None
    if any(n < 1 for n in numbers):
        raise ValueError(f"Invalid parent path '{text}'")
    return tuple(n - 1 for n in numbers)


def cmd_plan_add_phase(args, config: TrackerConfig) -> int:
    """Append a phase."""
    try:
        update = add_phase(config, args.id, args.name)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2
    print(f"Added phase {len(update.plan.phases)}: {args.name.strip()}")
    return 0


def cmd_plan_add_task(args, config: TrackerConfig) -> int:
    """Append a task (or subtask with --parent)."""
    try:
        phase_index = _parse_phase_number(args.phase)
        parent = _parse_parent(args.parent)
        update = add_task(config, args.id, phase_index, args.description, parent)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    tasks = update.plan.phases[phase_index].tasks
    for index in parent:
        tasks = tasks[index].subtasks
    path = format_task_path(phase_index, parent + (len(tasks) - 1,))
    print(f"Added task {path}: {args.description.strip()}")
    if update.unit.status != WorkUnitStatus.PLANNING:
        print(f"  {update.progress.completed_tasks}/{update.progress.total_tasks} tasks done "
              f"({update.progress.percent}%), status: {update.unit.status.value}")
    return 0
