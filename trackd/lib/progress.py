"""
Progress calculation over a parsed plan.

Only leaf tasks are counted: a task with subtasks contributes its subtasks,
never itself, so checking a parent can't inflate the totals.
"""

import math
from dataclasses import dataclass

from trackd.lib.planparse import Phase, Plan, Task, iter_leaves


@dataclass(frozen=True)
class Progress:
    completed_tasks: int
    total_tasks: int
    percent: int

    @property
    def is_complete(self) -> bool:
        return self.completed_tasks == self.total_tasks

    def to_dict(self) -> dict:
        return {
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "percent": self.percent,
        }


def percent_of(completed: int, total: int) -> int:
    """Round-half-up percentage; an empty plan is vacuously complete."""
    if total == 0:
        return 100
    return math.floor(100 * completed / total + 0.5)


def progress(plan: Plan) -> Progress:
    """Count completed vs total leaf tasks."""
    total = 0
    completed = 0
    for _, _, task in iter_leaves(plan):
        total += 1
        if task.done:
            completed += 1
    return Progress(completed, total, percent_of(completed, total))


def phase_progress(phase: Phase) -> Progress:
    return progress(Plan(phases=(phase,)))


def current_phase(plan: Plan) -> Phase | None:
    """First phase (in plan order) that is not fully complete, or None."""
    for phase in plan.phases:
        if not phase.completed:
            return phase
    return None


def next_pending_tasks(plan: Plan, limit: int) -> list[Task]:
    """First `limit` incomplete leaf tasks in document order."""
    if limit <= 0:
        return []
    pending = []
    for _, _, task in iter_leaves(plan):
        if not task.done:
            pending.append(task)
            if len(pending) >= limit:
                break
    return pending


def completed_phase_names(plan: Plan) -> set[str]:
    """Names of phases that are complete and contain at least one task."""
    return {p.name for p in plan.phases if p.tasks and p.completed}
