"""
plan.md parser and renderer.

A plan is a list of phases (headings) holding checkbox tasks, with nested
checkbox lines as subtasks:

    # Optional plan title

    ## Setup

    - [ ] Create repository
        - [x] Pick a name
    - [x] Add CI

The document is both the machine-readable state and the human-editable
artifact, so parse_plan(render_plan(plan)) == plan for every valid plan.
Plan values are immutable; every edit returns a new Plan.
"""

import re
from dataclasses import dataclass, replace
from typing import Iterator, Sequence

from trackd.lib.errors import IndexOutOfRange, MalformedPlan

HEADING_RE = re.compile(r'^(#{1,6})\s+(.*?)\s*$')
CHECKBOX_RE = re.compile(r'^(?P<indent>[ \t]*)[-*]\s+\[(?P<mark>[^\]]*)\](?:\s+(?P<text>.*?))?\s*$')
FENCE_RE = re.compile(r'^\s*(```|~~~)')

DONE_MARK = "x"
TODO_MARK = " "
INDENT = "    "


@dataclass(frozen=True)
class Task:
    description: str
    done: bool = False
    subtasks: tuple["Task", ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "subtasks", tuple(self.subtasks))

    @property
    def is_leaf(self) -> bool:
        return not self.subtasks

    @property
    def completed(self) -> bool:
        """A parent is complete only when every subtask is; its own flag is advisory."""
        if self.subtasks:
            return all(s.completed for s in self.subtasks)
        return self.done


@dataclass(frozen=True)
class Phase:
    name: str
    tasks: tuple[Task, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "tasks", tuple(self.tasks))

    @property
    def completed(self) -> bool:
        return all(t.completed for t in self.tasks)


@dataclass(frozen=True)
class Plan:
    phases: tuple[Phase, ...] = ()
    title: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "phases", tuple(self.phases))

    def phase_names(self) -> list[str]:
        return [p.name for p in self.phases]


class _Node:
    """Mutable task used while parsing; frozen into Task at the end."""

    def __init__(self, description: str, done: bool):
        self.description = description
        self.done = done
        self.children: list["_Node"] = []

    def freeze(self) -> Task:
        return Task(self.description, self.done, tuple(c.freeze() for c in self.children))


def parse_plan(text: str) -> Plan:
    """Parse plan.md text into a Plan.

    Raises:
        MalformedPlan: checkbox outside a phase, unknown checkbox marker,
            orphan indented checkbox, duplicate phase, or misplaced title
    """
    title = None
    phases: list[tuple[str, list[_Node]]] = []
    stack: list[tuple[int, _Node]] = []
    in_comment = False
    in_fence = False

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.rstrip()

        if FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        # HTML comment blocks open only on a line of their own; task and
        # phase text may contain the markers literally
        if in_comment:
            if '-->' in line:
                in_comment = False
            continue
        stripped = line.lstrip()
        if stripped.startswith('<!--'):
            in_comment = '-->' not in stripped[4:]
            continue

        heading = HEADING_RE.match(line)
        if heading:
            level = len(heading.group(1))
            name = heading.group(2)
            if level == 1:
                if title is not None or phases:
                    raise MalformedPlan("plan title must be the single level-1 heading before any phase", lineno)
                title = name
                continue
            if not name:
                raise MalformedPlan("phase heading has no name", lineno)
            if any(existing == name for existing, _ in phases):
                raise MalformedPlan(f"duplicate phase '{name}'", lineno)
            phases.append((name, []))
            stack = []
            continue

        checkbox = CHECKBOX_RE.match(line)
        if not checkbox:
            continue  # prose

        if not phases:
            raise MalformedPlan("checkbox line without an enclosing phase heading", lineno)

        mark = checkbox.group("mark")
        if mark not in (TODO_MARK, DONE_MARK):
            raise MalformedPlan(f"unrecognized checkbox marker '[{mark}]' (expected '[ ]' or '[x]')", lineno)

        indent = len(checkbox.group("indent").expandtabs(4))
        node = _Node((checkbox.group("text") or "").strip(), mark == DONE_MARK)

        while stack and stack[-1][0] >= indent:
            stack.pop()

        if stack:
            stack[-1][1].children.append(node)
        elif indent > 0:
            raise MalformedPlan("indented checkbox has no parent task", lineno)
        else:
            phases[-1][1].append(node)

        stack.append((indent, node))

    return Plan(
        phases=tuple(Phase(name, tuple(n.freeze() for n in nodes)) for name, nodes in phases),
        title=title,
    )


def _render_task(task: Task, depth: int, lines: list[str]) -> None:
    mark = DONE_MARK if task.done else TODO_MARK
    lines.append(f"{INDENT * depth}- [{mark}] {task.description}".rstrip())
    for sub in task.subtasks:
        _render_task(sub, depth + 1, lines)


def render_plan(plan: Plan) -> str:
    """Render a Plan as plan.md text (inverse of parse_plan)."""
    lines: list[str] = []
    if plan.title is not None:
        lines.extend([f"# {plan.title}", ""])

    for phase in plan.phases:
        lines.extend([f"## {phase.name}", ""])
        for task in phase.tasks:
            _render_task(task, 0, lines)
        lines.append("")

    if not lines:
        return ""
    return "\n".join(lines).rstrip("\n") + "\n"


def _check_index(items: Sequence, index: int, what: str, operation: str = "set_task_done") -> None:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(items):
        raise IndexOutOfRange(
            f"{what} index {index!r} out of range ({len(items)} available)",
            operation=operation,
        )


def _replace_task(tasks: tuple[Task, ...], path: tuple[int, ...], done: bool, depth: int) -> tuple[Task, ...]:
    index = path[0]
    _check_index(tasks, index, "task" if depth == 0 else "subtask")
    target = tasks[index]
    if len(path) == 1:
        updated = replace(target, done=done)
    else:
        updated = replace(target, subtasks=_replace_task(target.subtasks, path[1:], done, depth + 1))
    return tasks[:index] + (updated,) + tasks[index + 1:]


def set_task_done(plan: Plan, phase_index: int, task_path: Sequence[int], done: bool) -> Plan:
    """Return a new Plan with one task's done flag set. Never mutates plan.

    Args:
        plan: Plan to update
        phase_index: 0-based phase index
        task_path: 0-based indices from top-level task down to the target subtask
        done: New flag value

    Raises:
        IndexOutOfRange: If the phase or task path does not resolve
    """
    _check_index(plan.phases, phase_index, "phase")
    path = tuple(task_path)
    if not path:
        raise IndexOutOfRange("empty task path", operation="set_task_done")

    phase = plan.phases[phase_index]
    new_phase = replace(phase, tasks=_replace_task(phase.tasks, path, done, 0))
    phases = plan.phases[:phase_index] + (new_phase,) + plan.phases[phase_index + 1:]
    return replace(plan, phases=phases)


def get_task(plan: Plan, phase_index: int, task_path: Sequence[int]) -> Task:
    """Resolve a task path. Raises IndexOutOfRange if it does not resolve."""
    _check_index(plan.phases, phase_index, "phase", "get_task")
    path = tuple(task_path)
    if not path:
        raise IndexOutOfRange("empty task path", operation="get_task")
    tasks = plan.phases[phase_index].tasks
    task = None
    for depth, index in enumerate(path):
        _check_index(tasks, index, "task" if depth == 0 else "subtask", "get_task")
        task = tasks[index]
        tasks = task.subtasks
    return task


def iter_leaves(plan: Plan) -> Iterator[tuple[int, tuple[int, ...], Task]]:
    """Yield (phase_index, task_path, task) for every leaf task in document order."""

    def walk(tasks: tuple[Task, ...], prefix: tuple[int, ...]):
        for i, task in enumerate(tasks):
            path = prefix + (i,)
            if task.is_leaf:
                yield path, task
            else:
                yield from walk(task.subtasks, path)

    for phase_index, phase in enumerate(plan.phases):
        for path, task in walk(phase.tasks, ()):
            yield phase_index, path, task


def _clean_line(value: str, what: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{what} must not be empty")
    if "\n" in value or "\r" in value:
        raise ValueError(f"{what} must be a single line")
    return value


def add_phase(plan: Plan, name: str) -> Plan:
    """Return a new Plan with an empty phase appended.

    Raises:
        ValueError: If the name is empty, multi-line, or already used
    """
    name = _clean_line(name, "Phase name")
    if name in plan.phase_names():
        raise ValueError(f"Phase '{name}' already exists")
    return replace(plan, phases=plan.phases + (Phase(name),))


def add_task(plan: Plan, phase_index: int, description: str, parent_path: Sequence[int] = ()) -> Plan:
    """Return a new Plan with a task appended to a phase, or under a parent task.

    Raises:
        IndexOutOfRange: If the phase or parent path does not resolve
        ValueError: If the description is empty or multi-line
    """
    description = _clean_line(description, "Task description")
    _check_index(plan.phases, phase_index, "phase", "add_task")
    phase = plan.phases[phase_index]
    new_task = Task(description)

    def append_under(tasks: tuple[Task, ...], path: tuple[int, ...]) -> tuple[Task, ...]:
        if not path:
            return tasks + (new_task,)
        index = path[0]
        _check_index(tasks, index, "task", "add_task")
        target = tasks[index]
        updated = replace(target, subtasks=append_under(target.subtasks, path[1:]))
        return tasks[:index] + (updated,) + tasks[index + 1:]

    new_phase = replace(phase, tasks=append_under(phase.tasks, tuple(parent_path)))
    phases = plan.phases[:phase_index] + (new_phase,) + plan.phases[phase_index + 1:]
    return replace(plan, phases=phases)


def parse_task_path(text: str) -> tuple[int, tuple[int, ...]]:
    """Parse a 1-based dotted CLI path 'PHASE.TASK[.SUB...]' into 0-based indices.

    Raises:
        ValueError: If the path is not dotted positive integers with at least a task
    """
    parts = text.strip().split(".")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"Invalid task path '{text}' (expected e.g. 1.2 or 1.2.1)") from None
    if len(numbers) < 2 or any(n < 1 for n in numbers):
        raise ValueError(f"Invalid task path '{text}' (expected e.g. 1.2 or 1.2.1)")
    return numbers[0] - 1, tuple(n - 1 for n in numbers[1:])


def format_task_path(phase_index: int, task_path: Sequence[int]) -> str:
    """Inverse of parse_task_path."""
    return ".".join(str(i + 1) for i in (phase_index, *task_path))
