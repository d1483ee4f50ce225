"""
Tracker operations: the surface used by the CLI and by agents.

Each operation loads what it needs right before changing it, writes the
unit's files atomically, then refreshes the unit's registry row. The
registry is derived data; if a crash lands between the two writes,
rebuild_registry() repairs it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from trackd.lib import events
from trackd.lib.atomic import atomic_write_text
from trackd.lib.config import TrackerConfig, get_current_work_unit
from trackd.lib.constants import CONFIG_FILE
from trackd.lib.errors import Corrupt, IndexOutOfRange, MalformedPlan, TrackdError
from trackd.lib.models import WorkUnit, WorkUnitStatus, parse_status
from trackd.lib.planparse import Plan, format_task_path, get_task
from trackd.lib import planparse
from trackd.lib.progress import Progress, completed_phase_names, progress
from trackd.lib.registry import (
    Registry,
    RegistryDrift,
    RegistryRow,
    check_consistency,
    load_registry,
    save_registry,
)
from trackd.lib.report import ReportOptions, StatusReport, build_report
from trackd.lib.revert import CandidateCommit, find_revert_candidates
from trackd.lib.store import WorkUnitStore
from trackd.workflow.state_machine import status_for_progress, transition

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "Unknown"

CONFIG_TEMPLATE = """# trackd configuration
# Days a work unit may stay in planning before the report nags about it
STALE_PLANNING_DAYS=7
# Pending tasks listed per work unit in the status report
NEXT_TASKS_LIMIT=3
DEFAULT_CATEGORY=Feature
# Git repository searched for revert candidates (default: parent of this directory)
# REPO_PATH=/path/to/repo
"""


@dataclass
class PlanUpdate:
    """Result of a plan-changing operation."""
    unit: WorkUnit
    plan: Plan
    progress: Progress
    completed_phases: list[str]


def open_store(config: TrackerConfig) -> WorkUnitStore:
    return WorkUnitStore(config.tracks_dir, config.issued_ids_path)


def init_tracker(config: TrackerConfig) -> bool:
    """Create the tracker root layout. Returns False if it already existed."""
    existed = config.registry_path.exists()
    config.tracks_dir.mkdir(parents=True, exist_ok=True)
    if not (config.root / CONFIG_FILE).exists():
        atomic_write_text(config.root / CONFIG_FILE, CONFIG_TEMPLATE)
    if not existed:
        save_registry(config.registry_path, Registry())
        logger.info(f"Initialized tracker at {config.root}")
    return not existed


# Registry helpers

def load_registry_or_rebuild(config: TrackerConfig) -> Registry:
    """Load tracks.md, rebuilding it from metadata if it is corrupt."""
    try:
        return load_registry(config.registry_path)
    except Corrupt as e:
        logger.warning(f"Registry is corrupt ({e}); rebuilding from work unit metadata")
        return rebuild_registry(config)


def _update_registry(config: TrackerConfig, change: Callable[[Registry], Registry]) -> Registry:
    registry = change(load_registry_or_rebuild(config))
    save_registry(config.registry_path, registry)
    return registry


def _sync_row(config: TrackerConfig, unit: WorkUnit) -> None:
    row = RegistryRow.from_work_unit(unit, config.categories)
    _update_registry(config, lambda r: r.upsert(row))


def _placeholder_row(store: WorkUnitStore, unit_id: str) -> RegistryRow:
    """Row for a unit directory whose metadata cannot be read and that had no row before."""
    stamp = datetime.fromtimestamp(store.unit_dir(unit_id).stat().st_mtime, tz=timezone.utc).replace(microsecond=0)
    return RegistryRow(
        id=unit_id,
        title=unit_id,
        category=UNKNOWN_CATEGORY,
        status=WorkUnitStatus.PLANNING,
        created_at=stamp,
        updated_at=stamp,
    )


def rebuild_registry(config: TrackerConfig) -> Registry:
    """Regenerate tracks.md from every unit's metadata.

    Units with unreadable metadata keep their previous row, or get a
    placeholder row when there is none, so the status report can flag them
    instead of silently dropping them.
    """
    store = open_store(config)
    store.cleanup_leftovers()

    try:
        previous = load_registry(config.registry_path)
    except Corrupt as e:
        logger.warning(f"Discarding corrupt registry: {e}")
        previous = Registry()

    units: list[WorkUnit] = []
    kept: list[RegistryRow] = []
    for unit_id in store.list_ids():
        try:
            units.append(store.load(unit_id))
        except TrackdError as e:
            logger.warning(f"Rebuild: cannot load {unit_id}: {e}")
            row = previous.get(unit_id)
            kept.append(row if row is not None else _placeholder_row(store, unit_id))

    registry = Registry.rebuild_from(units, config.categories)
    for row in kept:
        registry = registry.upsert(row)

    save_registry(config.registry_path, registry)
    logger.info(f"Rebuilt registry with {len(registry)} row(s)")
    return registry


def check_registry(config: TrackerConfig) -> RegistryDrift:
    """Report drift between tracks.md and per-unit metadata."""
    return check_consistency(load_registry(config.registry_path), open_store(config), config.categories)


# Work unit lifecycle

def create_work_unit(
    config: TrackerConfig,
    title: str,
    category: str | None = None,
    attributes: dict | None = None,
    work_unit_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """Create a work unit and register it. Returns the new id.

    Raises:
        AlreadyExists: If work_unit_id is given and already used
        InvalidWorkUnitId: If work_unit_id is not a valid id
    """
    store = open_store(config)
    category = category or config.default_category
    if category not in config.categories.known:
        logger.info(f"Using custom category '{category}'")

    unit_id = work_unit_id or store.generate_id(title, now)
    unit = store.create(unit_id, title, category, attributes, now=now)
    events.record_event(store.events_path(unit_id), events.CREATED, unit.status.value, f"{category}: {unit.title}")
    _sync_row(config, unit)
    return unit_id


def get_status_report(config: TrackerConfig, now: datetime | None = None) -> StatusReport:
    options = ReportOptions(
        stale_planning_days=config.stale_planning_days,
        next_tasks_limit=config.next_tasks_limit,
    )
    return build_report(load_registry_or_rebuild(config), open_store(config), options, now)


def set_status(
    config: TrackerConfig,
    unit_id: str,
    status: WorkUnitStatus | str,
    reason: str = "",
    force: bool = False,
    now: datetime | None = None,
) -> WorkUnit:
    """Explicitly change a unit's status.

    Raises:
        ValueError: If status is not a known status
        InvalidTransition: If the change is not allowed (and not forced)
    """
    if isinstance(status, str):
        parsed = parse_status(status)
        if parsed is None:
            raise ValueError(f"Unknown status '{status}'")
        status = parsed

    store = open_store(config)
    unit = store.load(unit_id)
    previous = unit.status
    unit = transition(unit, status, reason=reason, force=force)
    if unit.status == previous and not force:
        return unit

    unit = store.save(unit, now=now)
    detail = f"{previous.value} -> {unit.status.value}" + (f": {reason}" if reason else "")
    events.record_event(store.events_path(unit_id), events.STATUS_CHANGED, unit.status.value, detail)
    _sync_row(config, unit)
    return unit


def delete_work_unit(config: TrackerConfig, unit_id: str) -> bool:
    """Delete a unit and its registry row. Idempotent; returns False if nothing was on disk."""
    store = open_store(config)
    removed = store.delete(unit_id)
    _update_registry(config, lambda r: r.remove(unit_id))
    get_current_work_unit(config.root)  # clears the context if it pointed here
    return removed


def revert_work_unit(
    config: TrackerConfig,
    unit_id: str,
    purge: bool = False,
) -> WorkUnit | None:
    """Mark a unit reverted (timestamps preserved), or delete it with purge.

    Returns the updated unit, or None when purged.
    """
    if purge:
        delete_work_unit(config, unit_id)
        return None

    store = open_store(config)
    unit = store.load(unit_id)
    if unit.status == WorkUnitStatus.REVERTED:
        return unit

    previous = unit.status
    unit = transition(unit, WorkUnitStatus.REVERTED, reason="revert")
    unit = store.save(unit, preserve_updated_at=True)
    events.record_event(store.events_path(unit_id), events.REVERTED, unit.status.value, f"from {previous.value}")
    _sync_row(config, unit)
    return unit


def get_revert_candidates(config: TrackerConfig, unit_id: str) -> list[CandidateCommit]:
    """Commits that likely belong to the unit, for human review before reverting."""
    store = open_store(config)
    unit = store.load(unit_id)
    try:
        plan = store.read_plan(unit_id)
    except MalformedPlan as e:
        logger.warning(f"Ignoring plan for revert matching: {e}")
        plan = None
    return find_revert_candidates(config.git_repo, unit, plan, unit_dir=store.unit_dir(unit_id))


# Plan changes

def _apply_plan_change(
    config: TrackerConfig,
    store: WorkUnitStore,
    unit: WorkUnit,
    old_plan: Plan,
    new_plan: Plan,
    now: datetime | None,
) -> PlanUpdate:
    store.write_plan(unit.id, new_plan)
    events_file = store.events_path(unit.id)

    newly_completed = sorted(completed_phase_names(new_plan) - completed_phase_names(old_plan),
                             key=new_plan.phase_names().index)
    for name in newly_completed:
        logger.info(f"{unit.id}: phase '{name}' completed")
        events.record_event(events_file, events.PHASE_COMPLETED, unit.status.value, name)

    prog = progress(new_plan)
    target = status_for_progress(unit.status, prog)
    if target != unit.status:
        previous = unit.status
        unit = transition(unit, target, reason=f"{prog.completed_tasks}/{prog.total_tasks} tasks done")
        events.record_event(events_file, events.STATUS_CHANGED, unit.status.value,
                            f"{previous.value} -> {unit.status.value}")

    unit = store.save(unit, now=now)
    _sync_row(config, unit)
    return PlanUpdate(unit=unit, plan=new_plan, progress=prog, completed_phases=newly_completed)


def _load_for_plan_change(store: WorkUnitStore, unit_id: str) -> tuple[WorkUnit, Plan]:
    unit = store.load(unit_id)
    plan = store.read_plan(unit_id)
    return unit, plan if plan is not None else Plan()


def set_task_done(
    config: TrackerConfig,
    unit_id: str,
    phase_index: int,
    task_path: Sequence[int],
    done: bool,
    now: datetime | None = None,
) -> PlanUpdate:
    """Check or uncheck one task, persist the plan, and update status/registry.

    Raises:
        NotFound, Corrupt: If the unit cannot be loaded
        MalformedPlan: If the plan cannot be parsed
        IndexOutOfRange: If the task path does not resolve
    """
    store = open_store(config)
    unit, plan = _load_for_plan_change(store, unit_id)

    try:
        new_plan = planparse.set_task_done(plan, phase_index, task_path, done)
    except IndexOutOfRange as e:
        raise e.with_context(unit_id, "set_task_done")

    task = get_task(new_plan, phase_index, task_path)
    event = events.TASK_CHECKED if done else events.TASK_UNCHECKED
    events.record_event(store.events_path(unit_id), event, unit.status.value,
                        f"{format_task_path(phase_index, task_path)} {task.description}")
    return _apply_plan_change(config, store, unit, plan, new_plan, now)


def add_phase(config: TrackerConfig, unit_id: str, name: str, now: datetime | None = None) -> PlanUpdate:
    """Append an empty phase to a unit's plan."""
    store = open_store(config)
    unit, plan = _load_for_plan_change(store, unit_id)
    return _apply_plan_change(config, store, unit, plan, planparse.add_phase(plan, name), now)


def add_task(
    config: TrackerConfig,
    unit_id: str,
    phase_index: int,
    description: str,
    parent_path: Sequence[int] = (),
    now: datetime | None = None,
) -> PlanUpdate:
    """Append a task to a phase (or a subtask under parent_path)."""
    store = open_store(config)
    unit, plan = _load_for_plan_change(store, unit_id)
    try:
        new_plan = planparse.add_task(plan, phase_index, description, parent_path)
    except IndexOutOfRange as e:
        raise e.with_context(unit_id, "add_task")
    return _apply_plan_change(config, store, unit, plan, new_plan, now)


def replace_plan(config: TrackerConfig, unit_id: str, plan: Plan, now: datetime | None = None) -> PlanUpdate:
    """Overwrite a unit's plan wholesale (e.g. with an agent-generated breakdown)."""
    store = open_store(config)
    unit, old_plan = _load_for_plan_change(store, unit_id)
    return _apply_plan_change(config, store, unit, old_plan, plan, now)
