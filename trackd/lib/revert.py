"""
Revert candidate discovery.

Finds commits that probably belong to a work unit by matching commit
subjects against the unit's id, title, phase names and task descriptions,
and by looking for commits that touched the unit's tracker directory. The
search window is the unit's created_at..updated_at range with a day of
slack on both ends.

Matching is heuristic, so results are only candidates: this module never
changes the repository. Callers show the list to a human, who decides what
to revert.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from trackd.git import get_log_entries, get_repo_toplevel, is_repository
from trackd.lib.models import WorkUnit
from trackd.lib.planparse import Plan, Task

logger = logging.getLogger(__name__)

DEFAULT_SLACK = timedelta(days=1)
MIN_TERM_LEN = 4
PHASE_PREFIX_RE = re.compile(r'^phase\s+\d+\s*[:.\-]\s*', re.IGNORECASE)


@dataclass
class CandidateCommit:
    sha: str
    date: str
    subject: str
    reasons: list[str] = field(default_factory=list)

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    def to_dict(self) -> dict:
        return {"sha": self.sha, "date": self.date, "subject": self.subject, "reasons": list(self.reasons)}


def _task_descriptions(tasks: tuple[Task, ...]) -> list[str]:
    found = []
    for task in tasks:
        found.append(task.description)
        found.extend(_task_descriptions(task.subtasks))
    return found


def match_terms(unit: WorkUnit, plan: Plan | None) -> list[tuple[str, str]]:
    """(label, term) pairs to look for in commit subjects, deduplicated."""
    terms = [("id", unit.id), ("title", unit.title)]
    if plan is not None:
        for phase in plan.phases:
            terms.append(("phase", phase.name))
            stripped = PHASE_PREFIX_RE.sub("", phase.name)
            if stripped != phase.name:
                terms.append(("phase", stripped))
            terms.extend(("task", d) for d in _task_descriptions(phase.tasks))

    seen = set()
    result = []
    for label, term in terms:
        key = term.strip().lower()
        if len(key) < MIN_TERM_LEN or key in seen:
            continue
        seen.add(key)
        result.append((label, term.strip()))
    return result


def _relative_dir(repo_path: Path, unit_dir: Path | None) -> str | None:
    if unit_dir is None:
        return None
    toplevel = get_repo_toplevel(repo_path)
    if toplevel is None:
        return None
    try:
        return unit_dir.resolve().relative_to(toplevel.resolve()).as_posix()
    except ValueError:
        return None  # tracker lives outside the repository


def find_revert_candidates(
    repo_path: Path,
    unit: WorkUnit,
    plan: Plan | None = None,
    unit_dir: Path | None = None,
    slack: timedelta = DEFAULT_SLACK,
) -> list[CandidateCommit]:
    """List commits (newest first) that likely belong to the work unit.

    Returns [] if repo_path is not a git repository.
    """
    if not is_repository(repo_path):
        logger.warning(f"Not a git repository: {repo_path}; no revert candidates for {unit.id}")
        return []

    entries = get_log_entries(
        repo_path,
        since=unit.created_at - slack,
        until=unit.updated_at + slack,
    )
    terms = match_terms(unit, plan)
    rel_dir = _relative_dir(repo_path, unit_dir)

    candidates = []
    for entry in entries:
        subject = entry.subject.lower()
        reasons = [f"{label}: {term}" for label, term in terms if term.lower() in subject]
        if rel_dir and any(f == rel_dir or f.startswith(rel_dir + "/") for f in entry.files):
            reasons.append("touches tracker files")
        if reasons:
            candidates.append(CandidateCommit(entry.sha, entry.date, entry.subject, reasons))

    logger.info(f"Found {len(candidates)} revert candidate(s) for {unit.id} in {len(entries)} commit(s)")
    return candidates


def revert_commands(candidates: list[CandidateCommit]) -> list[str]:
    """git commands a human could run, newest commit first."""
    return [f"git revert --no-edit {c.sha}" for c in candidates]
