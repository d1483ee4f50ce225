"""
Registry index: the tracks.md summary table of all work units.

The registry is a denormalized cache of fields also stored in each unit's
metadata.json. Metadata is authoritative; the registry can always be
rebuilt from it. Registry values are immutable: upsert/remove/rebuild_from
return a new Registry and persistence is an explicit save_registry call.

Document format:

    # Tracks Registry

    | ID | Title | Category | Details | Status | Created | Updated |
    | --- | --- | --- | --- | --- | --- | --- |
    | dark_mode | Add dark mode | Feature |  | planning | 2026-01-05T10:00:00+00:00 | ... |

Cells escape backslash and pipe with a backslash; the Details cell holds
`key=value; key=value` with `;` and `=` escaped as well.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from trackd.lib.atomic import atomic_write_text
from trackd.lib.categories import CategoriesConfig
from trackd.lib.errors import Corrupt, TrackdError
from trackd.lib.models import (
    WorkUnit,
    WorkUnitStatus,
    format_timestamp,
    parse_status,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

COLUMNS = ["ID", "Title", "Category", "Details", "Status", "Created", "Updated"]

HEADER = """# Tracks Registry

<!-- Maintained by trackd. tracks/<id>/metadata.json is authoritative; run `trackd rebuild` after manual edits. -->
"""


@dataclass(frozen=True)
class RegistryRow:
    """One summary row per work unit."""
    id: str
    title: str
    category: str
    status: WorkUnitStatus
    created_at: datetime
    updated_at: datetime
    details: tuple[tuple[str, str], ...] = ()

    def __post_init__(self):
        details = self.details.items() if isinstance(self.details, dict) else self.details
        object.__setattr__(self, "details", tuple((str(k), str(v)) for k, v in details))

    @property
    def details_dict(self) -> dict[str, str]:
        return dict(self.details)

    @classmethod
    def from_work_unit(cls, unit: WorkUnit, categories: CategoriesConfig | None = None) -> "RegistryRow":
        categories = categories or CategoriesConfig()
        return cls(
            id=unit.id,
            title=unit.title,
            category=unit.category,
            status=unit.status,
            created_at=unit.created_at,
            updated_at=unit.updated_at,
            details=categories.registry_details(unit.category, unit.attributes),
        )


@dataclass(frozen=True)
class RegistryStats:
    total: int
    by_status: dict[WorkUnitStatus, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "by_status": {s.value: n for s, n in self.by_status.items()},
        }


@dataclass(frozen=True)
class Registry:
    rows: tuple[RegistryRow, ...] = ()

    def __post_init__(self):
        rows = tuple(self.rows)
        seen = set()
        for row in rows:
            if row.id in seen:
                raise ValueError(f"Duplicate registry id '{row.id}'")
            seen.add(row.id)
        object.__setattr__(self, "rows", rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[RegistryRow]:
        return iter(self.rows)

    def __contains__(self, unit_id: str) -> bool:
        return self.get(unit_id) is not None

    def ids(self) -> list[str]:
        return [r.id for r in self.rows]

    def get(self, unit_id: str) -> RegistryRow | None:
        for row in self.rows:
            if row.id == unit_id:
                return row
        return None

    def upsert(self, row: RegistryRow) -> "Registry":
        """Replace the row with the same id in place, or append a new row."""
        rows = list(self.rows)
        for i, existing in enumerate(rows):
            if existing.id == row.id:
                rows[i] = row
                return replace(self, rows=tuple(rows))
        rows.append(row)
        return replace(self, rows=tuple(rows))

    def remove(self, unit_id: str) -> "Registry":
        """Drop the row for unit_id; a missing id is a no-op."""
        return replace(self, rows=tuple(r for r in self.rows if r.id != unit_id))

    @classmethod
    def rebuild_from(cls, work_units: Iterable[WorkUnit], categories: CategoriesConfig | None = None) -> "Registry":
        """Regenerate the registry from authoritative metadata, ordered by creation."""
        latest: dict[str, WorkUnit] = {}
        for unit in work_units:
            latest[unit.id] = unit
        ordered = sorted(latest.values(), key=lambda u: (u.created_at, u.id))
        return cls(rows=tuple(RegistryRow.from_work_unit(u, categories) for u in ordered))

    def summary_statistics(self) -> RegistryStats:
        counts = {status: 0 for status in WorkUnitStatus}
        for row in self.rows:
            counts[row.status] += 1
        return RegistryStats(total=len(self.rows), by_status=counts)


# Rendering / parsing

def _escape(text: str, specials: str) -> str:
    text = text.replace("\r", " ").replace("\n", " ")
    return "".join("\\" + ch if ch == "\\" or ch in specials else ch for ch in text)


def _unescape(text: str) -> str:
    return re.sub(r'\\(.)', r'\1', text)


def _split_escaped(text: str, sep: str) -> list[str]:
    """Split on unescaped sep, keeping escape sequences intact."""
    parts: list[str] = []
    buf: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            buf.append(text[i:i + 2])
            i += 2
            continue
        if ch == sep:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    parts.append("".join(buf))
    return parts


def _render_details(details: tuple[tuple[str, str], ...]) -> str:
    return "; ".join(f"{_escape(k, ';=|')}={_escape(v, ';=|')}" for k, v in details)


def _parse_details(cell: str) -> tuple[tuple[str, str], ...]:
    pairs = []
    for part in _split_escaped(cell, ";"):
        if not part.strip():
            continue
        kv = _split_escaped(part.strip(), "=")
        if len(kv) != 2:
            raise ValueError(f"invalid details entry '{part.strip()}'")
        pairs.append((_unescape(kv[0].strip()), _unescape(kv[1].strip())))
    return tuple(pairs)


def render_registry(registry: Registry) -> str:
    lines = [HEADER]
    lines.append("| " + " | ".join(COLUMNS) + " |")
    lines.append("| " + " | ".join("---" for _ in COLUMNS) + " |")
    for row in registry.rows:
        cells = [
            _escape(row.id, "|"),
            _escape(row.title, "|"),
            _escape(row.category, "|"),
            _render_details(row.details),
            row.status.value,
            format_timestamp(row.created_at),
            format_timestamp(row.updated_at),
        ]
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines) + "\n"


def _is_separator(cells: list[str]) -> bool:
    return all(re.fullmatch(r':?-{3,}:?', c) for c in cells)


def parse_registry(text: str) -> Registry:
    """Parse a tracks.md document.

    Raises:
        Corrupt: If the table is malformed, has bad values, or duplicate ids
    """
    rows: list[RegistryRow] = []
    header_seen = False

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line.startswith("|"):
            if header_seen and rows and line:
                break  # table ended
            continue
        if not line.endswith("|") or len(line) < 2:
            raise Corrupt(f"line {lineno}: table row must end with '|'", operation="load_registry")

        cells = [c.strip() for c in _split_escaped(line[1:-1], "|")]

        if not header_seen:
            if [c.lower() for c in cells] != [c.lower() for c in COLUMNS]:
                raise Corrupt(f"line {lineno}: unexpected table header", operation="load_registry")
            header_seen = True
            continue
        if _is_separator(cells):
            continue
        if len(cells) != len(COLUMNS):
            raise Corrupt(
                f"line {lineno}: expected {len(COLUMNS)} columns, found {len(cells)}",
                operation="load_registry",
            )

        unit_id, title, category, details, status_text, created, updated = cells
        status = parse_status(status_text)
        if status is None:
            raise Corrupt(f"line {lineno}: unknown status '{status_text}'", _unescape(unit_id), "load_registry")
        try:
            row = RegistryRow(
                id=_unescape(unit_id),
                title=_unescape(title),
                category=_unescape(category),
                status=status,
                created_at=parse_timestamp(created),
                updated_at=parse_timestamp(updated),
                details=_parse_details(details),
            )
        except ValueError as e:
            raise Corrupt(f"line {lineno}: {e}", _unescape(unit_id), "load_registry") from None
        rows.append(row)

    try:
        return Registry(rows=tuple(rows))
    except ValueError as e:
        raise Corrupt(str(e), operation="load_registry") from None


def load_registry(path: Path) -> Registry:
    """Load tracks.md; a missing document is an empty registry."""
    if not path.exists():
        return Registry()
    return parse_registry(path.read_text(encoding="utf-8"))


def save_registry(path: Path, registry: Registry) -> None:
    atomic_write_text(path, render_registry(registry))


# Drift detection

@dataclass
class RegistryDrift:
    """Differences between the registry cache and per-unit metadata."""
    missing_from_registry: list[str] = field(default_factory=list)
    orphaned_rows: list[str] = field(default_factory=list)
    mismatched: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (self.missing_from_registry or self.orphaned_rows or self.mismatched or self.unreadable)


def check_consistency(registry: Registry, store, categories: CategoriesConfig | None = None) -> RegistryDrift:
    """Compare registry rows against every unit directory in the store."""
    drift = RegistryDrift()
    on_disk = store.list_ids()

    for unit_id in on_disk:
        row = registry.get(unit_id)
        if row is None:
            drift.missing_from_registry.append(unit_id)
        try:
            unit = store.load(unit_id)
        except TrackdError as e:
            logger.warning(f"Cannot check {unit_id}: {e}")
            drift.unreadable.append(unit_id)
            continue
        if row is not None and row != RegistryRow.from_work_unit(unit, categories):
            drift.mismatched.append(unit_id)

    disk_ids = set(on_disk)
    drift.orphaned_rows = [r.id for r in registry.rows if r.id not in disk_ids]
    return drift
