"""
trackd done / trackd undo - Check or uncheck a plan task.

Task paths are 1-based: PHASE.TASK[.SUBTASK...], e.g. 2.1 or 2.1.3.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.operations import set_task_done
from trackd.lib.planparse import get_task, parse_task_path


def _set(args, config: TrackerConfig, done: bool) -> int:
    try:
        phase_index, task_path = parse_task_path(args.path)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    update = set_task_done(config, args.id, phase_index, task_path, done)
    task = get_task(update.plan, phase_index, task_path)

    marker = "[x]" if done else "[ ]"
    print(f"{marker} {args.path} {task.description}")
    if not task.is_leaf:
        print("  (parent task: progress follows its subtasks)")
    for name in update.completed_phases:
        print(f"  Phase complete: {name}")
    prog = update.progress
    print(f"  {prog.completed_tasks}/{prog.total_tasks} tasks done ({prog.percent}%), "
          f"status: {update.unit.status.value}")
    return 0


def cmd_done(args, config: TrackerConfig) -> int:
    """Mark a task done."""
    return _set(args, config, True)


def cmd_undo(args, config: TrackerConfig) -> int:
    """Mark a task not done."""
    return _set(args, config, False)
