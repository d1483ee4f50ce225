"""
trackd show - Show one work unit: metadata, plan with task paths, recent events.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.errors import MalformedPlan
from trackd.lib.events import load_events
from trackd.lib.models import format_timestamp
from trackd.lib.operations import open_store
from trackd.lib.planparse import Task, format_task_path
from trackd.lib.progress import phase_progress, progress
from trackd.workflow.state_machine import allowed_targets

RECENT_EVENTS = 10


def _print_tasks(tasks: tuple[Task, ...], phase_index: int, prefix: tuple[int, ...], depth: int) -> None:
    for i, task in enumerate(tasks):
        path = prefix + (i,)
        marker = "[x]" if task.completed else "[ ]"
        print(f"  {'    ' * depth}{marker} {format_task_path(phase_index, path):<8} {task.description}")
        _print_tasks(task.subtasks, phase_index, path, depth + 1)


def cmd_show(args, config: TrackerConfig) -> int:
    """Show work unit details."""
    store = open_store(config)
    unit = store.load(args.id)

    # Header
    print(f"Work unit: {unit.id}")
    print("=" * 60)
    print(f"Title:    {unit.title}")
    print(f"Category: {unit.category}")
    print(f"Status:   {unit.status.label}")
    print(f"Created:  {format_timestamp(unit.created_at)}")
    print(f"Updated:  {format_timestamp(unit.updated_at)}")
    for key, value in sorted(unit.attributes.items()):
        print(f"  {key}: {value}")
    print()

    try:
        plan = store.read_plan(unit.id)
    except MalformedPlan as e:
        print("Plan")
        print("-" * 40)
        print(f"  [!] Cannot parse plan.md: {e.message}")
        print()
        plan = None
    else:
        if plan is None or not plan.phases:
            print("Plan: empty")
            print()

    if plan is not None and plan.phases:
        prog = progress(plan)
        print(f"Plan ({prog.percent}%, {prog.completed_tasks}/{prog.total_tasks} tasks)")
        print("-" * 40)
        for phase_index, phase in enumerate(plan.phases):
            pp = phase_progress(phase)
            print(f"  {phase_index + 1}. {phase.name}  ({pp.completed_tasks}/{pp.total_tasks})")
            _print_tasks(phase.tasks, phase_index, (), 1)
        print()

    events = load_events(store.events_path(unit.id))
    if events:
        print("Recent events")
        print("-" * 40)
        for event in events[-RECENT_EVENTS:]:
            detail = f" - {event.detail}" if event.detail else ""
            print(f"  {event.timestamp}  {event.event}{detail}")
        print()

    targets = allowed_targets(unit.status)
    if targets:
        print("Actions")
        print("-" * 40)
        print(f"  trackd done {unit.id} <path>             - Check a task (e.g. 1.1)")
        print(f"  trackd set-status {unit.id} <status>     - One of: {', '.join(t.value for t in targets)}")
    return 0
