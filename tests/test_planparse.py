"""Tests for trackd.lib.planparse module."""

import pytest

from trackd.lib.errors import IndexOutOfRange, MalformedPlan
from trackd.lib.planparse import (
    Phase,
    Plan,
    Task,
    add_phase,
    add_task,
    format_task_path,
    get_task,
    iter_leaves,
    parse_plan,
    parse_task_path,
    render_plan,
    set_task_done,
)


SAMPLE_PLAN = """# Implementation Plan: Add dark mode

Some intro prose that is not a task.

## Phase 1: Setup

- [x] Create theme tokens
- [ ] Wire toggle
    - [x] Add settings entry
    - [ ] Persist preference

## Phase 2: Testing

* [ ] Snapshot tests
"""


class TestParsePlan:
    """Tests for parse_plan()."""

    def test_parses_title_phases_and_tasks(self):
        plan = parse_plan(SAMPLE_PLAN)

        assert plan.title == "Implementation Plan: Add dark mode"
        assert plan.phase_names() == ["Phase 1: Setup", "Phase 2: Testing"]
        setup = plan.phases[0]
        assert setup.tasks[0] == Task("Create theme tokens", done=True)
        assert setup.tasks[1].description == "Wire toggle"
        assert setup.tasks[1].subtasks == (
            Task("Add settings entry", done=True),
            Task("Persist preference", done=False),
        )
        assert plan.phases[1].tasks == (Task("Snapshot tests"),)

    def test_empty_text_is_empty_plan(self):
        assert parse_plan("") == Plan()

    def test_deeper_headings_are_phases(self):
        plan = parse_plan("### Setup\n- [ ] a\n#### Later\n- [ ] b\n")
        assert plan.phase_names() == ["Setup", "Later"]
        assert plan.title is None

    def test_ignores_html_comments(self):
        text = "# Plan\n\n<!--\n## Phase 1: Example\n\n- [ ] Task\n-->\n\n## Real\n\n- [ ] Work\n"
        plan = parse_plan(text)
        assert plan.phase_names() == ["Real"]
        assert plan.phases[0].tasks == (Task("Work"),)

    def test_single_line_comment(self):
        plan = parse_plan("## Setup\n<!-- hidden -->\n- [ ] Visible\n")
        assert plan.phases[0].tasks == (Task("Visible"),)

    def test_comment_markers_inside_task_text(self):
        text = "## Setup\n\n- [ ] Strip <!-- markers\n- [ ] arrow --> here\n\n## Ship\n\n- [ ] Deploy\n"
        plan = parse_plan(text)
        assert plan.phase_names() == ["Setup", "Ship"]
        assert [t.description for t in plan.phases[0].tasks] == ["Strip <!-- markers", "arrow --> here"]

    def test_ignores_fenced_code(self):
        text = "## Docs\n\n```\n## Not a phase\n- [ ] not a task\n```\n- [ ] Real task\n"
        plan = parse_plan(text)
        assert plan.phase_names() == ["Docs"]
        assert [t.description for t in plan.phases[0].tasks] == ["Real task"]

    def test_markdown_links_are_prose(self):
        plan = parse_plan("## Setup\n- [docs](https://example.com)\n- [ ] Task\n")
        assert len(plan.phases[0].tasks) == 1

    def test_tabs_count_as_four_columns(self):
        plan = parse_plan("## Setup\n- [ ] Parent\n\t- [ ] Child\n")
        assert plan.phases[0].tasks[0].subtasks == (Task("Child"),)

    def test_dedent_returns_to_correct_parent(self):
        text = (
            "## P\n"
            "- [ ] a\n"
            "    - [ ] a1\n"
            "        - [ ] a1x\n"
            "    - [ ] a2\n"
            "- [ ] b\n"
        )
        plan = parse_plan(text)
        a, b = plan.phases[0].tasks
        assert [t.description for t in a.subtasks] == ["a1", "a2"]
        assert a.subtasks[0].subtasks == (Task("a1x"),)
        assert b == Task("b")

    def test_empty_phase(self):
        plan = parse_plan("## Setup\n\n## Testing\n- [ ] t\n")
        assert plan.phases[0] == Phase("Setup")


class TestParsePlanErrors:
    """parse_plan() rejects documents that violate the grammar."""

    def test_checkbox_before_phase(self):
        with pytest.raises(MalformedPlan) as exc_info:
            parse_plan("# Title\n\n- [ ] orphan\n")
        assert exc_info.value.line_number == 3
        assert "line 3" in str(exc_info.value)

    @pytest.mark.parametrize("mark", ["X", "~", "", "-", "xx"])
    def test_unrecognized_marker(self, mark):
        with pytest.raises(MalformedPlan, match="unrecognized checkbox marker"):
            parse_plan(f"## P\n- [{mark}] task\n")

    def test_duplicate_phase(self):
        with pytest.raises(MalformedPlan, match="duplicate phase") as exc_info:
            parse_plan("## Setup\n- [ ] a\n## Setup\n")
        assert exc_info.value.line_number == 3

    def test_indented_checkbox_without_parent(self):
        with pytest.raises(MalformedPlan, match="no parent"):
            parse_plan("## Setup\n    - [ ] floating\n")

    def test_indented_first_task_after_heading(self):
        with pytest.raises(MalformedPlan):
            parse_plan("## A\n- [ ] a\n## B\n    - [ ] floating\n")

    def test_title_after_phase(self):
        with pytest.raises(MalformedPlan, match="title"):
            parse_plan("## Setup\n# Late title\n")

    def test_two_titles(self):
        with pytest.raises(MalformedPlan):
            parse_plan("# One\n# Two\n")


class TestRenderPlan:
    """Tests for render_plan()."""

    def test_renders_nested_tasks_with_four_space_indent(self):
        plan = Plan(
            title="Plan",
            phases=[Phase("Setup", [Task("Parent", subtasks=[Task("Child", done=True)])])],
        )
        assert render_plan(plan) == "# Plan\n\n## Setup\n\n- [ ] Parent\n    - [x] Child\n"

    def test_empty_plan_renders_empty(self):
        assert render_plan(Plan()) == ""

    def test_round_trip_sample(self):
        plan = parse_plan(SAMPLE_PLAN)
        assert parse_plan(render_plan(plan)) == plan

    @pytest.mark.parametrize("plan", [
        Plan(),
        Plan(title="Only a title"),
        Plan(phases=[Phase("Empty")]),
        Plan(phases=[Phase("A", [Task("a")]), Phase("B", [Task("b", True)])]),
        Plan(phases=[Phase("Deep", [Task("1", subtasks=[Task("2", subtasks=[Task("3", True)])])])]),
        Plan(title="T", phases=[Phase("Parent done", [Task("p", True, [Task("c")])])]),
        Plan(phases=[Phase("Setup", [Task("Strip <!-- markers"), Task("Second")]), Phase("Ship", [Task("Deploy")])]),
        Plan(phases=[Phase("A", [Task("arrow --> here", True, [Task("<!-- nested -->")])])]),
        Plan(title="Keep <!-- this", phases=[Phase("<!-- phase -->", [Task("a")]), Phase("B --> C")]),
        Plan(phases=[Phase("```", [Task("```python"), Task("~~~ tilde")]), Phase("After fence")]),
    ])
    def test_round_trip(self, plan):
        assert parse_plan(render_plan(plan)) == plan

    def test_lists_are_normalized_to_tuples(self):
        assert Plan(phases=[Phase("A", [Task("a")])]) == Plan(phases=(Phase("A", (Task("a"),)),))


class TestCompletion:
    """Parent tasks are complete only when all subtasks are."""

    def test_done_parent_with_open_subtask_is_incomplete(self):
        task = Task("parent", done=True, subtasks=[Task("child")])
        assert not task.completed

    def test_undone_parent_with_done_subtasks_is_complete(self):
        task = Task("parent", done=False, subtasks=[Task("a", True), Task("b", True)])
        assert task.completed

    def test_phase_without_tasks_is_complete(self):
        assert Phase("Empty").completed


class TestSetTaskDone:
    """Tests for set_task_done()."""

    def test_returns_new_plan_without_mutating(self):
        plan = parse_plan(SAMPLE_PLAN)
        updated = set_task_done(plan, 0, (1, 1), True)

        assert get_task(updated, 0, (1, 1)).done is True
        assert get_task(plan, 0, (1, 1)).done is False
        assert updated.phases[1] is plan.phases[1]

    def test_unset(self):
        plan = parse_plan(SAMPLE_PLAN)
        updated = set_task_done(plan, 0, (0,), False)
        assert get_task(updated, 0, (0,)).done is False

    @pytest.mark.parametrize("phase_index,path", [
        (2, (0,)),
        (-1, (0,)),
        (0, (5,)),
        (0, (0, 0)),
        (0, (1, 2)),
        (1, ()),
    ])
    def test_out_of_range(self, phase_index, path):
        plan = parse_plan(SAMPLE_PLAN)
        with pytest.raises(IndexOutOfRange):
            set_task_done(plan, phase_index, path, True)


class TestHelpers:
    """Tests for add_phase(), add_task(), iter_leaves() and task paths."""

    def test_iter_leaves_in_document_order(self):
        plan = parse_plan(SAMPLE_PLAN)
        leaves = [(p, path, t.description) for p, path, t in iter_leaves(plan)]
        assert leaves == [
            (0, (0,), "Create theme tokens"),
            (0, (1, 0), "Add settings entry"),
            (0, (1, 1), "Persist preference"),
            (1, (0,), "Snapshot tests"),
        ]

    def test_add_phase(self):
        plan = add_phase(Plan(), "  Setup ")
        assert plan.phase_names() == ["Setup"]

    def test_add_phase_rejects_duplicate(self):
        with pytest.raises(ValueError, match="already exists"):
            add_phase(Plan(phases=[Phase("Setup")]), "Setup")

    def test_add_phase_rejects_multiline(self):
        with pytest.raises(ValueError):
            add_phase(Plan(), "a\nb")

    def test_add_task_and_subtask(self):
        plan = add_phase(Plan(), "Setup")
        plan = add_task(plan, 0, "Parent")
        plan = add_task(plan, 0, "Child", parent_path=(0,))
        assert plan.phases[0].tasks == (Task("Parent", subtasks=(Task("Child"),)),)

    def test_add_task_bad_phase(self):
        with pytest.raises(IndexOutOfRange):
            add_task(Plan(), 0, "x")

    def test_add_task_empty_description(self):
        with pytest.raises(ValueError):
            add_task(Plan(phases=[Phase("A")]), 0, "   ")

    def test_parse_task_path(self):
        assert parse_task_path("1.2") == (0, (1,))
        assert parse_task_path("2.1.3") == (1, (0, 2))

    @pytest.mark.parametrize("text", ["1", "0.1", "1.0", "a.b", "1..2", ""])
    def test_parse_task_path_invalid(self, text):
        with pytest.raises(ValueError):
            parse_task_path(text)

    def test_format_task_path_inverts_parse(self):
        assert format_task_path(*parse_task_path("3.1.2")) == "3.1.2"
