"""
trackd new - Create a new work unit.

Creates tracks/<id>/ with spec.md, plan.md, metadata.json and an event log,
and adds a row to tracks.md.
"""

import yaml

from trackd.lib.config import TrackerConfig, set_current_work_unit
from trackd.lib.operations import create_work_unit


def parse_attributes(pairs: list[str] | None) -> dict:
    """Parse key=value pairs. Numbers and booleans are typed, everything else stays a string.

    Raises:
        ValueError: If a pair has no '=' or an empty key
    """
    attributes = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid attribute '{pair}' (expected key=value)")
        value = value.strip()
        try:
            parsed = yaml.safe_load(value) if value else value
        except yaml.YAMLError:
            parsed = value
        attributes[key] = parsed if isinstance(parsed, (bool, int, float)) else value
    return attributes


def cmd_new(args, config: TrackerConfig) -> int:
    """Create a work unit."""
    title = args.title.strip()
    if not title:
        print("ERROR: Title must not be empty")
        return 2
    if "\n" in title or "\r" in title:
        print("ERROR: Title must be a single line")
        return 2

    try:
        attributes = parse_attributes(args.attr)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    unit_id = create_work_unit(
        config,
        title,
        category=args.category,
        attributes=attributes,
        work_unit_id=args.id,
    )
    set_current_work_unit(config.root, unit_id)

    print(f"Created work unit: {unit_id}")
    print(f"  Spec: {config.tracks_dir / unit_id / 'spec.md'}")
    print(f"  Plan: {config.tracks_dir / unit_id / 'plan.md'}")
    print()
    print("Next steps:")
    print(f"  trackd plan add-phase \"Phase 1: ...\"   - Start the plan (or edit plan.md)")
    print(f"  trackd show {unit_id}")
    return 0
