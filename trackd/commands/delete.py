"""
trackd delete - Permanently remove a work unit and its registry row.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.operations import delete_work_unit


def cmd_delete(args, config: TrackerConfig) -> int:
    """Delete a work unit (idempotent)."""
    if delete_work_unit(config, args.id):
        print(f"Deleted work unit: {args.id}")
    else:
        print(f"Work unit '{args.id}' not found on disk; registry row removed if present")
    return 0
