"""
trackd init - Create a tracker root.

Creates:
- <root>/trackd.env with commented defaults
- <root>/tracks/
- <root>/tracks.md (empty registry)
"""

from trackd.lib.config import TrackerConfig
from trackd.lib.operations import init_tracker


def cmd_init(args, config: TrackerConfig) -> int:
    """Initialize a tracker at the resolved root."""
    if init_tracker(config):
        print(f"Initialized tracker at {config.root}")
        print()
        print("Next steps:")
        print("  trackd new \"<title>\"    - Create a work unit")
    else:
        print(f"Tracker already initialized at {config.root}")
    return 0
