"""Read-only git access for trackd.

Return type conventions:
- GitResult: caller must check .success before using output.
- bool: True when the condition holds, False otherwise (including errors).
- Parsed values (list, Path): empty list / None on failure.
"""

from trackd.git.runner import GitResult, run_git
from trackd.git.log import LogEntry, get_log_entries, get_repo_toplevel, is_repository

__all__ = [
    "GitResult",
    "run_git",
    "LogEntry",
    "get_log_entries",
    "get_repo_toplevel",
    "is_repository",
]
