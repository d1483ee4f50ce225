"""
trackd rebuild / trackd check - Registry maintenance.

tracks.md is a cache of per-unit metadata; rebuild regenerates it and
check reports where the two disagree.
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.operations import check_registry, rebuild_registry


def cmd_rebuild(args, config: TrackerConfig) -> int:
    """Regenerate tracks.md from metadata."""
    registry = rebuild_registry(config)
    print(f"Rebuilt {config.registry_path.name}: {len(registry)} work unit(s)")
    return 0


def cmd_check(args, config: TrackerConfig) -> int:
    """Report registry drift. Exit 1 if anything disagrees."""
    drift = check_registry(config)
    if drift.is_consistent:
        print("Registry is consistent with work unit metadata")
        return 0

    sections = [
        ("Missing from registry", drift.missing_from_registry),
        ("Registry rows without a work unit", drift.orphaned_rows),
        ("Registry rows out of date", drift.mismatched),
        ("Unreadable metadata", drift.unreadable),
    ]
    for title, ids in sections:
        if ids:
            print(title)
            print("-" * 40)
            for unit_id in ids:
                print(f"  {unit_id}")
            print()
    print("Run `trackd rebuild` to regenerate the registry.")
    return 1
