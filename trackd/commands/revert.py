"""
trackd revert - Review commits that belong to a work unit and mark it reverted.

Without --confirm this only lists candidate commits and the git commands
that would undo them; trackd never changes the repository itself.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.operations import get_revert_candidates, revert_work_unit
from trackd.lib.revert import revert_commands


def cmd_revert(args, config: TrackerConfig) -> int:
    """Show revert candidates; with --confirm, mark reverted (or delete with --purge)."""
    candidates = get_revert_candidates(config, args.id)

    print(f"Revert candidates for {args.id} (repo: {config.git_repo})")
    print("-" * 60)
    if candidates:
        for c in candidates:
            print(f"  {c.short_sha}  {c.date[:10]}  {c.subject}")
            print(f"           matched {'; '.join(c.reasons)}")
        print()
        print("To undo these commits (review first, newest first):")
        for command in revert_commands(candidates):
            print(f"  {command}")
    else:
        print("  No matching commits found")
    print()

    if not args.confirm:
        if args.purge:
            print("Re-run with --confirm to delete the work unit.")
        else:
            print(f"Re-run with --confirm to mark {args.id} as reverted.")
        return 0

    unit = revert_work_unit(config, args.id, purge=args.purge)
    if unit is None:
        print(f"Deleted work unit: {args.id}")
    else:
        print(f"{unit.id}: {unit.status.label}")
    return 0
