"""
trackd set-status - Explicitly change a work unit's status.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.errors import InvalidTransition
from trackd.lib.models import WorkUnitStatus, parse_status
from trackd.lib.operations import open_store, set_status
from trackd.workflow.state_machine import allowed_targets


def cmd_set_status(args, config: TrackerConfig) -> int:
    """Change status, validated against the lifecycle unless --force."""
    target = parse_status(args.status)
    if target is None:
        print(f"ERROR: Unknown status '{args.status}'")
        print(f"  Valid: {', '.join(s.value for s in WorkUnitStatus)}")
        return 2

    try:
        unit = set_status(config, args.id, target, reason=args.reason or "", force=args.force)
    except InvalidTransition as e:
        current = open_store(config).load(args.id).status
        targets = ", ".join(t.value for t in allowed_targets(current)) or "none"
        print(f"ERROR: {e}")
        print(f"  From {current.value} you can move to: {targets} (or use --force)")
        return 1

    print(f"{unit.id}: {unit.status.label}")
    return 0
