"""
trackd status - Print the status report across all work units.
"""

import json

from trackd.lib.config import TrackerConfig
from trackd.lib.operations import get_status_report
from trackd.lib.report import format_report


def cmd_status(args, config: TrackerConfig) -> int:
    """Print the status report (text or JSON)."""
    report = get_status_report(config)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print(format_report(report))
    if report.problems:
        print(f"[!] {len(report.problems)} work unit(s) could not be fully read")
    return 0
