"""
trackd list - List work units from the registry.
"""

from trackd.lib.config import TrackerConfig, get_current_work_unit
from trackd.lib.operations import load_registry_or_rebuild


def cmd_list(args, config: TrackerConfig) -> int:
    """List registered work units."""
    registry = load_registry_or_rebuild(config)
    if not len(registry):
        print("Work units: none")
        print()
        print("Get started:")
        print("  trackd new \"<title>\"    - Create a work unit")
        return 0

    current = get_current_work_unit(config.root)
    print("Work units")
    print("-" * 60)
    for row in registry:
        marker = "*" if row.id == current else " "
        title = row.title[:40] + "..." if len(row.title) > 40 else row.title
        details = ", ".join(f"{k}={v}" for k, v in row.details)
        suffix = f"  [{details}]" if details else ""
        print(f" {marker}{row.id:<28} {row.status.value:<12} {row.category:<16} {title}{suffix}")
    print()

    stats = registry.summary_statistics()
    counts = ", ".join(f"{n} {s.value}" for s, n in stats.by_status.items() if n)
    print(f"{stats.total} work unit(s): {counts}")
    return 0
