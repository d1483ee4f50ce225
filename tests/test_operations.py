"""Tests for trackd.lib.operations module.

Exercises the tracker surface end to end against a temporary root.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from trackd.lib import events
from trackd.lib.config import TrackerConfig, get_current_work_unit, set_current_work_unit
from trackd.lib.errors import AlreadyExists, IndexOutOfRange, InvalidTransition, MalformedPlan, NotFound
from trackd.lib.models import WorkUnitStatus
from trackd.lib.operations import (
    add_phase,
    add_task,
    check_registry,
    create_work_unit,
    delete_work_unit,
    get_revert_candidates,
    get_status_report,
    init_tracker,
    open_store,
    rebuild_registry,
    replace_plan,
    revert_work_unit,
    set_status,
    set_task_done,
)
from trackd.lib.planparse import Phase, Plan, Task
from trackd.lib.registry import load_registry

T0 = datetime(2026, 1, 5, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def config(tmp_path):
    config = TrackerConfig(root=tmp_path / ".trackd")
    init_tracker(config)
    return config


def with_plan(config, unit_id, plan):
    replace_plan(config, unit_id, plan)


def event_names(config, unit_id):
    return [e.event for e in events.load_events(open_store(config).events_path(unit_id))]


class TestInit:
    """Tests for init_tracker()."""

    def test_creates_layout(self, config):
        assert config.tracks_dir.is_dir()
        assert config.registry_path.exists()
        assert (config.root / "trackd.env").exists()

    def test_second_init_reports_existing(self, config):
        assert init_tracker(config) is False


class TestScenarios:
    """End-to-end lifecycle of a single work unit."""

    def test_scenario_a_create_then_report(self, config):
        unit_id = create_work_unit(config, "Add dark mode", "Feature", work_unit_id="t1")
        report = get_status_report(config)

        assert unit_id == "t1"
        assert report.total == 1
        entry = report.entry("t1")
        assert entry.status == WorkUnitStatus.PLANNING
        assert (entry.completed_tasks, entry.total_tasks, entry.progress_percent) == (0, 0, 100)

    def test_scenario_b_half_done(self, config):
        create_work_unit(config, "Add dark mode", work_unit_id="t1")
        add_phase(config, "t1", "Setup")
        add_task(config, "t1", 0, "Create tokens")
        add_task(config, "t1", 0, "Wire toggle")

        update = set_task_done(config, "t1", 0, (0,), True)

        assert update.progress.to_dict() == {"completed_tasks": 1, "total_tasks": 2, "percent": 50}
        assert get_status_report(config).entry("t1").current_phase_name == "Setup"

    def test_scenario_c_next_phase(self, config):
        create_work_unit(config, "Add dark mode", work_unit_id="t1")
        with_plan(config, "t1", Plan(phases=[
            Phase("Setup", [Task("a"), Task("b")]),
            Phase("Testing", [Task("c")]),
        ]))
        set_task_done(config, "t1", 0, (0,), True)
        update = set_task_done(config, "t1", 0, (1,), True)

        assert update.progress.percent == 67
        assert update.completed_phases == ["Setup"]
        entry = get_status_report(config).entry("t1")
        assert entry.current_phase_name == "Testing"
        assert entry.progress_percent == 67

    def test_scenario_d_delete_twice(self, config):
        create_work_unit(config, "Add dark mode", work_unit_id="t1")

        assert delete_work_unit(config, "t1") is True
        assert get_status_report(config).total == 0
        assert delete_work_unit(config, "t1") is False
        assert "t1" not in load_registry(config.registry_path)

    def test_scenario_e_corrupt_metadata(self, config):
        create_work_unit(config, "Add dark mode", work_unit_id="t1")
        open_store(config).metadata_path("t1").write_text("not json at all")

        report = get_status_report(config)

        assert report.entry("t1").data_unavailable is True
        assert report.total == 1


class TestCreateWorkUnit:
    """Tests for create_work_unit()."""

    def test_registers_row_and_event(self, config):
        unit_id = create_work_unit(config, "Shopify sync", "Connector", {"platform": "shopify"}, now=T0)

        assert unit_id == "shopify_sync_20260105"
        row = load_registry(config.registry_path).get(unit_id)
        assert row.details_dict == {"platform": "shopify"}
        assert row.created_at == T0
        assert event_names(config, unit_id) == ["created"]

    def test_default_category_from_config(self, config):
        config.default_category = "BugFix"
        unit_id = create_work_unit(config, "Crash on start")
        assert open_store(config).load(unit_id).category == "BugFix"

    def test_collision_leaves_existing_state(self, config):
        create_work_unit(config, "First", work_unit_id="t1")
        registry_before = config.registry_path.read_text()

        with pytest.raises(AlreadyExists):
            create_work_unit(config, "Second", work_unit_id="t1")

        assert config.registry_path.read_text() == registry_before
        assert open_store(config).load("t1").title == "First"

    def test_generated_ids_are_unique(self, config):
        ids = [create_work_unit(config, "Same title", now=T0) for _ in range(3)]
        assert len(set(ids)) == 3
        assert open_store(config).list_ids() == sorted(ids)
        assert load_registry(config.registry_path).ids() == ids


class TestSetTaskDone:
    """Tests for set_task_done()."""

    @pytest.fixture
    def unit(self, config):
        create_work_unit(config, "Add dark mode", work_unit_id="t1", now=T0)
        with_plan(config, "t1", Plan(phases=[Phase("Setup", [Task("a"), Task("b")])]))
        return "t1"

    def test_first_task_moves_to_in_progress(self, config, unit):
        update = set_task_done(config, unit, 0, (0,), True)
        assert update.unit.status == WorkUnitStatus.IN_PROGRESS
        assert load_registry(config.registry_path).get(unit).status == WorkUnitStatus.IN_PROGRESS

    def test_all_tasks_complete_the_unit(self, config, unit):
        set_task_done(config, unit, 0, (0,), True)
        update = set_task_done(config, unit, 0, (1,), True)
        assert update.unit.status == WorkUnitStatus.COMPLETED
        assert "phase_completed" in event_names(config, unit)

    def test_unchecking_reopens(self, config, unit):
        set_task_done(config, unit, 0, (0,), True)
        set_task_done(config, unit, 0, (1,), True)
        update = set_task_done(config, unit, 0, (1,), False)
        assert update.unit.status == WorkUnitStatus.IN_PROGRESS
        assert update.progress.percent == 50

    def test_persists_plan(self, config, unit):
        set_task_done(config, unit, 0, (1,), True)
        plan = open_store(config).read_plan(unit)
        assert plan.phases[0].tasks == (Task("a"), Task("b", True))

    def test_bumps_updated_at(self, config, unit):
        later = T0 + timedelta(hours=3)
        update = set_task_done(config, unit, 0, (0,), True, now=later)
        assert update.unit.updated_at == later
        assert update.unit.created_at == T0

    def test_blocked_unit_keeps_status(self, config, unit):
        set_status(config, unit, WorkUnitStatus.BLOCKED)
        update = set_task_done(config, unit, 0, (0,), True)
        assert update.unit.status == WorkUnitStatus.BLOCKED

    def test_out_of_range_names_unit(self, config, unit):
        with pytest.raises(IndexOutOfRange) as exc_info:
            set_task_done(config, unit, 0, (7,), True)
        assert exc_info.value.work_unit_id == unit
        assert "set_task_done" in str(exc_info.value)

    def test_out_of_range_leaves_plan(self, config, unit):
        before = open_store(config).plan_path(unit).read_text()
        with pytest.raises(IndexOutOfRange):
            set_task_done(config, unit, 3, (0,), True)
        assert open_store(config).plan_path(unit).read_text() == before

    def test_malformed_plan(self, config, unit):
        open_store(config).plan_path(unit).write_text("- [ ] floating\n")
        with pytest.raises(MalformedPlan):
            set_task_done(config, unit, 0, (0,), True)

    def test_unknown_unit(self, config):
        with pytest.raises(NotFound):
            set_task_done(config, "ghost", 0, (0,), True)

    def test_records_task_events(self, config, unit):
        set_task_done(config, unit, 0, (0,), True)
        set_task_done(config, unit, 0, (0,), False)
        names = event_names(config, unit)
        assert "task_checked" in names
        assert "task_unchecked" in names
        assert "status_changed" in names


class TestSetStatus:
    """Tests for set_status()."""

    def test_valid_transition(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        unit = set_status(config, "a", "blocked", reason="waiting on design")

        assert unit.status == WorkUnitStatus.BLOCKED
        assert open_store(config).load("a").status == WorkUnitStatus.BLOCKED
        assert load_registry(config.registry_path).get("a").status == WorkUnitStatus.BLOCKED

    def test_invalid_transition_leaves_state(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        set_status(config, "a", WorkUnitStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            set_status(config, "a", WorkUnitStatus.COMPLETED)
        assert open_store(config).load("a").status == WorkUnitStatus.CANCELLED

    def test_force(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        set_status(config, "a", WorkUnitStatus.CANCELLED)
        unit = set_status(config, "a", WorkUnitStatus.COMPLETED, force=True)
        assert unit.status == WorkUnitStatus.COMPLETED

    def test_unknown_status(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        with pytest.raises(ValueError):
            set_status(config, "a", "done")

    def test_same_status_is_noop(self, config):
        create_work_unit(config, "A", work_unit_id="a", now=T0)
        unit = set_status(config, "a", WorkUnitStatus.PLANNING)
        assert unit.updated_at == T0
        assert event_names(config, "a") == ["created"]

    def test_unknown_unit(self, config):
        with pytest.raises(NotFound):
            set_status(config, "ghost", WorkUnitStatus.BLOCKED)


class TestDeleteAndRevert:
    """Tests for delete_work_unit() and revert_work_unit()."""

    def test_delete_clears_context(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        set_current_work_unit(config.root, "a")
        delete_work_unit(config, "a")
        assert get_current_work_unit(config.root) is None
        assert not (config.root / "config" / "current_track").exists()

    def test_revert_preserves_timestamps(self, config):
        create_work_unit(config, "A", work_unit_id="a", now=T0)
        set_status(config, "a", WorkUnitStatus.IN_PROGRESS, now=T0 + timedelta(days=1))

        unit = revert_work_unit(config, "a")

        assert unit.status == WorkUnitStatus.REVERTED
        assert unit.updated_at == T0 + timedelta(days=1)
        assert open_store(config).load("a").status == WorkUnitStatus.REVERTED
        assert load_registry(config.registry_path).get("a").status == WorkUnitStatus.REVERTED
        assert event_names(config, "a")[-1] == "reverted"

    def test_revert_twice_is_noop(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        revert_work_unit(config, "a")
        assert revert_work_unit(config, "a").status == WorkUnitStatus.REVERTED
        assert event_names(config, "a").count("reverted") == 1

    def test_revert_purge_deletes(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        assert revert_work_unit(config, "a", purge=True) is None
        assert not open_store(config).exists("a")
        assert "a" not in load_registry(config.registry_path)

    def test_revert_unknown_unit(self, config):
        with pytest.raises(NotFound):
            revert_work_unit(config, "ghost")

    def test_revert_candidates_use_config_repo(self, config, tmp_path):
        create_work_unit(config, "A", work_unit_id="a")
        config.repo_path = tmp_path / "repo"
        with patch("trackd.lib.operations.find_revert_candidates", return_value=[]) as mock_find:
            assert get_revert_candidates(config, "a") == []
        args, kwargs = mock_find.call_args
        assert args[0] == tmp_path / "repo"
        assert args[1].id == "a"
        assert kwargs["unit_dir"] == config.tracks_dir / "a"


class TestRegistryRecovery:
    """Tests for rebuild_registry() and check_registry()."""

    def test_corrupt_registry_is_rebuilt_for_report(self, config, caplog):
        create_work_unit(config, "A", work_unit_id="a")
        config.registry_path.write_text("| broken | table\n")

        report = get_status_report(config)

        assert report.total == 1
        assert "rebuilding" in caplog.text
        assert load_registry(config.registry_path).ids() == ["a"]

    def test_missing_rows_restored(self, config):
        create_work_unit(config, "A", work_unit_id="a", now=T0)
        create_work_unit(config, "B", work_unit_id="b", now=T0 + timedelta(days=1))
        config.registry_path.unlink()

        registry = rebuild_registry(config)

        assert registry.ids() == ["a", "b"]
        assert check_registry(config).is_consistent

    def test_corrupt_unit_keeps_previous_row(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        create_work_unit(config, "B", work_unit_id="b")
        open_store(config).metadata_path("a").write_text("{")

        registry = rebuild_registry(config)

        assert "a" in registry
        assert "b" in registry
        assert get_status_report(config).entry("a").data_unavailable

    def test_corrupt_registry_and_metadata_still_reported(self, config):
        create_work_unit(config, "A", work_unit_id="t1")
        open_store(config).metadata_path("t1").write_text("{broken")
        config.registry_path.write_text("| bad |\n")

        report = get_status_report(config)

        assert report.total == 1
        entry = report.entry("t1")
        assert entry.data_unavailable
        assert entry.category == "Unknown"
        assert load_registry(config.registry_path).get("t1").title == "t1"

    def test_unreadable_unit_without_row_gets_placeholder(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        open_store(config).metadata_path("a").write_text("[]")
        config.registry_path.unlink()

        row = rebuild_registry(config).get("a")

        assert row.category == "Unknown"
        assert row.status == WorkUnitStatus.PLANNING
        assert check_registry(config).unreadable == ["a"]

    def test_orphan_rows_dropped(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        open_store(config).delete("a")
        assert check_registry(config).orphaned_rows == ["a"]
        assert len(rebuild_registry(config)) == 0

    def test_rebuild_removes_leftovers(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        (config.tracks_dir / ".b.tmp123").mkdir()
        rebuild_registry(config)
        assert [p.name for p in config.tracks_dir.iterdir()] == ["a"]

    def test_check_detects_manual_metadata_edit(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        path = open_store(config).metadata_path("a")
        data = json.loads(path.read_text())
        data["title"] = "Renamed by hand"
        path.write_text(json.dumps(data))

        assert check_registry(config).mismatched == ["a"]
        rebuild_registry(config)
        assert load_registry(config.registry_path).get("a").title == "Renamed by hand"


class TestPlanEditing:
    """Tests for add_phase() / add_task()."""

    def test_add_phase_and_tasks(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        add_phase(config, "a", "Setup")
        add_task(config, "a", 0, "Parent")
        update = add_task(config, "a", 0, "Child", parent_path=(0,))

        assert update.plan.phases[0].tasks[0].subtasks == (Task("Child"),)
        assert update.plan.title == "Implementation Plan: A"
        assert open_store(config).read_plan("a") == update.plan

    def test_add_task_reopens_completed_unit(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        with_plan(config, "a", Plan(phases=[Phase("P", [Task("x")])]))
        assert set_task_done(config, "a", 0, (0,), True).unit.status == WorkUnitStatus.COMPLETED

        update = add_task(config, "a", 0, "one more thing")
        assert update.unit.status == WorkUnitStatus.IN_PROGRESS

    def test_task_text_with_comment_markers_is_kept(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        add_phase(config, "a", "Setup")
        add_task(config, "a", 0, "Remove <!-- legacy markup")
        update = add_task(config, "a", 0, "Second task")

        assert [t.description for t in update.plan.phases[0].tasks] == ["Remove <!-- legacy markup", "Second task"]
        assert open_store(config).read_plan("a") == update.plan

    def test_empty_phase_keeps_completed_unit_completed(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        set_status(config, "a", WorkUnitStatus.COMPLETED)

        update = add_phase(config, "a", "Follow-up")

        assert update.unit.status == WorkUnitStatus.COMPLETED

    def test_add_task_bad_phase(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        with pytest.raises(IndexOutOfRange) as exc_info:
            add_task(config, "a", 4, "x")
        assert exc_info.value.work_unit_id == "a"

    def test_duplicate_phase(self, config):
        create_work_unit(config, "A", work_unit_id="a")
        add_phase(config, "a", "Setup")
        with pytest.raises(ValueError):
            add_phase(config, "a", "Setup")
