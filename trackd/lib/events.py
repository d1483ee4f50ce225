"""
Per work unit lifecycle event log.

Events are appended to tracks/<id>/events.jsonl, one JSON object per line.
The log is informational; metadata.json stays the source of truth.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from trackd.lib.atomic import append_line
from trackd.lib.models import format_timestamp, utcnow
from trackd.lib.validate import validate_before_write

logger = logging.getLogger(__name__)

CREATED = "created"
STATUS_CHANGED = "status_changed"
TASK_CHECKED = "task_checked"
TASK_UNCHECKED = "task_unchecked"
PHASE_COMPLETED = "phase_completed"
REVERTED = "reverted"


@dataclass
class Event:
    """A single lifecycle event."""
    timestamp: str
    event: str
    status: str
    detail: str = ""


def record_event(events_file: Path, event: str, status: str, detail: str = "") -> Event:
    """Append an event to the log."""
    record = Event(timestamp=format_timestamp(utcnow()), event=event, status=status, detail=detail)
    data = asdict(record)
    validate_before_write(data, "event", events_file)
    append_line(events_file, json.dumps(data))
    return record


def load_events(events_file: Path) -> list[Event]:
    """Load all events for a unit. Skips corrupted lines."""
    if not events_file.exists():
        return []

    events = []
    for line_num, line in enumerate(events_file.read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            events.append(Event(**data))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Skipping corrupted event line {line_num} in {events_file}: {e}")
    return events
