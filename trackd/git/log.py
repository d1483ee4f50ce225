"""Git history queries."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from trackd.git.runner import run_git

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"


@dataclass
class LogEntry:
    """One commit from git log."""
    sha: str
    date: str  # author date, ISO 8601
    subject: str
    files: list[str] = field(default_factory=list)


def is_repository(path: Path) -> bool:
    """Check if path is inside a git work tree."""
    result = run_git(["rev-parse", "--is-inside-work-tree"], path)
    return result.success and result.stdout.strip() == "true"


def get_log_entries(
    repo: Path,
    since: datetime | None = None,
    until: datetime | None = None,
    max_count: int = 500,
) -> list[LogEntry]:
    """
    List commits (newest first) with the files each one touched.

    Returns:
        List of LogEntry, or [] on error
    """
    args = [
        "log",
        f"--max-count={max_count}",
        "--name-only",
        f"--format={RECORD_SEP}%H{FIELD_SEP}%aI{FIELD_SEP}%s",
    ]
    if since is not None:
        args.append(f"--since={since.isoformat()}")
    if until is not None:
        args.append(f"--until={until.isoformat()}")

    result = run_git(args, repo, timeout=20)
    if not result.success:
        return []

    entries = []
    for record in result.stdout.split(RECORD_SEP):
        if not record.strip():
            continue
        header, _, rest = record.partition("\n")
        parts = header.split(FIELD_SEP)
        if len(parts) != 3:
            continue
        sha, date, subject = parts
        files = [line.strip() for line in rest.splitlines() if line.strip()]
        entries.append(LogEntry(sha=sha, date=date, subject=subject, files=files))
    return entries


def get_repo_toplevel(path: Path) -> Path | None:
    """Absolute path of the repository's top-level directory."""
    result = run_git(["rev-parse", "--show-toplevel"], path)
    if result.success:
        return Path(result.stdout.strip())
    return None
