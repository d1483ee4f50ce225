"""
Data models for work units.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class WorkUnitStatus(Enum):
    """All valid work unit statuses."""

    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"
    REVERTED = "reverted"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. 'In Progress'."""
        return self.value.replace("_", " ").title()


def parse_status(value: str | None) -> WorkUnitStatus | None:
    """Parse a status string (value, enum name or label) into WorkUnitStatus.

    Returns None if the status is unknown.
    """
    if value is None:
        return None
    normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
    if normalized == "inprogress":
        normalized = "in_progress"
    for status in WorkUnitStatus:
        if status.value == normalized:
            return status
    return None


def utcnow() -> datetime:
    """Current time, timezone-aware UTC, second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Sub-second precision is dropped to match what format_timestamp writes.

    Raises:
        ValueError: if the string is not a valid timestamp
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.replace(microsecond=0)


@dataclass(frozen=True)
class WorkUnit:
    """One tracked effort: a feature, bug fix, connector or storage component.

    Metadata only; the spec and plan documents live next to metadata.json
    and are read through the store.
    """
    id: str
    title: str
    category: str
    status: WorkUnitStatus
    created_at: datetime
    updated_at: datetime
    attributes: dict[str, Any] = field(default_factory=dict)

    def with_status(self, status: WorkUnitStatus) -> "WorkUnit":
        return replace(self, status=status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "status": self.status.value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkUnit":
        """Build from a schema-validated metadata dict.

        Raises:
            ValueError: on unknown status or unparseable timestamps
        """
        status = parse_status(data["status"])
        if status is None:
            raise ValueError(f"Unknown status '{data['status']}'")
        return cls(
            id=data["id"],
            title=data["title"],
            category=data["category"],
            status=status,
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            attributes=dict(data.get("attributes", {})),
        )
