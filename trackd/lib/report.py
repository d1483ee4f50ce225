"""
Status report: registry + per-unit plan progress, grouped by status, with
rule-based recommendations.

One unreadable unit never blanks out the whole report: per-unit failures
are downgraded to PartialData, logged, and the entry is flagged
data_unavailable.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from trackd.lib.errors import PartialData, TrackdError
from trackd.lib.models import WorkUnitStatus, format_timestamp, utcnow
from trackd.lib.progress import current_phase, next_pending_tasks, progress
from trackd.lib.registry import Registry, RegistryRow

logger = logging.getLogger(__name__)


@dataclass
class ReportOptions:
    stale_planning_days: int = 7
    next_tasks_limit: int = 3


@dataclass
class Recommendation:
    kind: str  # focus, start, stale_planning, blocked, mark_complete, repair
    message: str
    work_unit_id: str | None = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "work_unit_id": self.work_unit_id}


@dataclass
class UnitReport:
    """One work unit's line in the report."""
    id: str
    title: str
    category: str
    status: WorkUnitStatus
    created_at: datetime
    updated_at: datetime
    completed_tasks: int | None = None
    total_tasks: int | None = None
    progress_percent: int | None = None
    current_phase_name: str | None = None
    next_pending_tasks: list[str] = field(default_factory=list)
    data_unavailable: bool = False
    problem: str | None = None

    @property
    def has_progress(self) -> bool:
        return self.progress_percent is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "status": self.status.value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "progress_percent": self.progress_percent,
            "current_phase_name": self.current_phase_name,
            "next_pending_tasks": list(self.next_pending_tasks),
            "data_unavailable": self.data_unavailable,
            "problem": self.problem,
        }


@dataclass
class StatusReport:
    generated_at: datetime
    total: int
    counts_by_status: dict[WorkUnitStatus, int]
    entries: list[UnitReport] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    problems: list[PartialData] = field(default_factory=list)

    def by_status(self) -> dict[WorkUnitStatus, list[UnitReport]]:
        """Entries grouped by status, in status enum order; empty groups omitted."""
        groups: dict[WorkUnitStatus, list[UnitReport]] = {}
        for status in WorkUnitStatus:
            members = [e for e in self.entries if e.status == status]
            if members:
                groups[status] = members
        return groups

    def entry(self, unit_id: str) -> UnitReport | None:
        for e in self.entries:
            if e.id == unit_id:
                return e
        return None

    def to_dict(self) -> dict:
        return {
            "generated_at": format_timestamp(self.generated_at),
            "total": self.total,
            "counts_by_status": {s.value: n for s, n in self.counts_by_status.items()},
            "entries": [e.to_dict() for e in self.entries],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "problems": [str(p) for p in self.problems],
        }


def _degrade(entry: UnitReport, error: Exception, what: str) -> PartialData:
    detail = error.message if isinstance(error, TrackdError) else str(error)
    problem = PartialData(f"{what}: {detail}", entry.id, "report", cause=error)
    entry.data_unavailable = True
    entry.problem = problem.message
    logger.warning(f"Report: {problem}")
    return problem


def build_unit_report(row: RegistryRow, store, options: ReportOptions) -> tuple[UnitReport, PartialData | None]:
    """Build one entry. Never raises for per-unit data problems."""
    entry = UnitReport(
        id=row.id,
        title=row.title,
        category=row.category,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

    try:
        unit = store.load(row.id)
    except (TrackdError, OSError) as e:
        return entry, _degrade(entry, e, "metadata unavailable")

    entry.title = unit.title
    entry.category = unit.category
    entry.status = unit.status
    entry.created_at = unit.created_at
    entry.updated_at = unit.updated_at

    try:
        plan = store.read_plan(row.id)
    except (TrackdError, OSError) as e:
        return entry, _degrade(entry, e, "plan unavailable")

    if plan is None:
        return entry, None  # no progress data

    prog = progress(plan)
    phase = current_phase(plan)
    entry.completed_tasks = prog.completed_tasks
    entry.total_tasks = prog.total_tasks
    entry.progress_percent = prog.percent
    entry.current_phase_name = phase.name if phase else None
    entry.next_pending_tasks = [t.description for t in next_pending_tasks(plan, options.next_tasks_limit)]
    return entry, None


def recommend(entries: list[UnitReport], options: ReportOptions, now: datetime) -> list[Recommendation]:
    """Rule-based suggestions for what to do next."""
    recs: list[Recommendation] = []
    in_progress = [e for e in entries if e.status == WorkUnitStatus.IN_PROGRESS]
    planning = sorted(
        (e for e in entries if e.status == WorkUnitStatus.PLANNING),
        key=lambda e: (e.created_at, e.id),
    )

    if len(in_progress) > 1:
        ids = ", ".join(e.id for e in in_progress)
        recs.append(Recommendation(
            "focus",
            f"{len(in_progress)} work units are in progress ({ids}); consider finishing one before the others.",
        ))

    if not in_progress:
        if planning:
            first = planning[0]
            recs.append(Recommendation(
                "start",
                f"No work unit is in progress; start '{first.id}' ({first.title}).",
                first.id,
            ))
        else:
            recs.append(Recommendation(
                "start",
                "No work unit is in progress; create one with `trackd new`.",
            ))

    stale_after = timedelta(days=options.stale_planning_days)
    for e in planning:
        age = now - e.created_at
        if age > stale_after:
            recs.append(Recommendation(
                "stale_planning",
                f"'{e.id}' has been in planning for {age.days} days; finish its plan and start it, or cancel it.",
                e.id,
            ))

    for e in entries:
        if e.status == WorkUnitStatus.BLOCKED:
            recs.append(Recommendation("blocked", f"'{e.id}' is blocked; resolve the blocker or cancel it.", e.id))

    for e in in_progress:
        if e.total_tasks and e.progress_percent == 100:
            recs.append(Recommendation(
                "mark_complete",
                f"All tasks of '{e.id}' are done; mark it completed.",
                e.id,
            ))

    unavailable = [e.id for e in entries if e.data_unavailable]
    if unavailable:
        recs.append(Recommendation(
            "repair",
            f"Data unavailable for {', '.join(unavailable)}; fix the files or run `trackd rebuild`.",
        ))

    return recs


def build_report(
    registry: Registry,
    store,
    options: ReportOptions | None = None,
    now: datetime | None = None,
) -> StatusReport:
    """Aggregate every registry row into a StatusReport."""
    options = options or ReportOptions()
    now = now or utcnow()

    entries: list[UnitReport] = []
    problems: list[PartialData] = []
    for row in registry.rows:
        entry, problem = build_unit_report(row, store, options)
        entries.append(entry)
        if problem is not None:
            problems.append(problem)

    counts = {status: 0 for status in WorkUnitStatus}
    for e in entries:
        counts[e.status] += 1

    return StatusReport(
        generated_at=now,
        total=len(entries),
        counts_by_status=counts,
        entries=entries,
        recommendations=recommend(entries, options, now),
        problems=problems,
    )


def _entry_line(e: UnitReport) -> list[str]:
    title = e.title[:36] + "..." if len(e.title) > 36 else e.title
    if e.data_unavailable:
        return [f"  {e.id:<28} {title:<40} [DATA UNAVAILABLE] {e.problem}"]
    if not e.has_progress:
        return [f"  {e.id:<28} {title:<40} no plan"]

    progress_str = f"{e.progress_percent:>3}% ({e.completed_tasks}/{e.total_tasks})"
    phase = f"  phase: {e.current_phase_name}" if e.current_phase_name else ""
    lines = [f"  {e.id:<28} {title:<40} {progress_str}{phase}"]
    if e.next_pending_tasks:
        lines.append(f"      next: {'; '.join(e.next_pending_tasks)}")
    return lines


def format_report(report: StatusReport) -> str:
    """Render a StatusReport as plain text."""
    lines = [f"Status Report ({format_timestamp(report.generated_at)})", "=" * 60, ""]
    lines.append(f"Total: {report.total} work unit(s)")
    counts = "   ".join(
        f"{status.label}: {n}" for status, n in report.counts_by_status.items() if n
    )
    if counts:
        lines.append(f"  {counts}")
    lines.append("")

    for status, members in report.by_status().items():
        lines.append(status.label)
        lines.append("-" * 60)
        for e in members:
            lines.extend(_entry_line(e))
        lines.append("")

    if report.recommendations:
        lines.append("Recommendations")
        lines.append("-" * 60)
        for r in report.recommendations:
            lines.append(f"  - {r.message}")
        lines.append("")

    return "\n".join(lines)
