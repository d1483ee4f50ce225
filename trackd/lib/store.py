"""
Work unit store.

Each work unit lives in its own directory:
  <root>/tracks/<id>/spec.md        free-text spec (never parsed)
  <root>/tracks/<id>/plan.md        checkbox plan (see planparse)
  <root>/tracks/<id>/metadata.json  WorkUnit record, schema-validated

metadata.json is the source of truth for a unit; the registry is derived
from it. Creation is staged in a hidden directory and renamed into place,
so a unit either exists with all three files or not at all.
"""

import json
import logging
import os
import re
import secrets
import shutil
import tempfile
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from trackd.lib.atomic import append_line, atomic_write_text
from trackd.lib.constants import (
    EVENTS_FILE,
    MAX_WORK_UNIT_ID_LEN,
    METADATA_FILE,
    PLAN_FILE,
    SPEC_FILE,
    WORK_UNIT_ID_PATTERN,
)
from trackd.lib.errors import AlreadyExists, Corrupt, InvalidWorkUnitId, MalformedPlan, NotFound
from trackd.lib.models import WorkUnit, WorkUnitStatus, utcnow
from trackd.lib.planparse import Plan, parse_plan, render_plan
from trackd.lib.validate import ValidationError, validate, validate_before_write

logger = logging.getLogger(__name__)

PLAN_FORMAT_HINT = """<!--
Phases are headings, tasks are checkboxes, indent 4 spaces for subtasks:

## Phase 1: Setup

- [ ] Task
    - [ ] Subtask
-->
"""


def spec_template(title: str) -> str:
    return f"""# Specification: {title}

## Overview

<!-- What is this work unit for? -->

## Requirements

## Out of Scope
"""


def slugify_id(title: str, max_len: int = 32) -> str:
    """Turn a title into an id stem: lowercase, underscores, starts with a letter."""
    slug = re.sub(r'[^a-z0-9]+', '_', title.lower()).strip('_')
    if not slug or not slug[0].isalpha():
        slug = f"t_{slug}".rstrip('_')
    return slug[:max_len].rstrip('_')


class WorkUnitStore:
    """Filesystem-backed persistence for work units."""

    def __init__(self, tracks_dir: Path, issued_ids_path: Path | None = None):
        self.tracks_dir = Path(tracks_dir)
        self.issued_ids_path = issued_ids_path

    # Paths

    def unit_dir(self, unit_id: str) -> Path:
        return self.tracks_dir / unit_id

    def metadata_path(self, unit_id: str) -> Path:
        return self.unit_dir(unit_id) / METADATA_FILE

    def plan_path(self, unit_id: str) -> Path:
        return self.unit_dir(unit_id) / PLAN_FILE

    def spec_path(self, unit_id: str) -> Path:
        return self.unit_dir(unit_id) / SPEC_FILE

    def events_path(self, unit_id: str) -> Path:
        return self.unit_dir(unit_id) / EVENTS_FILE

    # Ids

    @staticmethod
    def validate_id(unit_id: str) -> None:
        """Raise InvalidWorkUnitId unless unit_id is a safe directory name."""
        if not unit_id or not WORK_UNIT_ID_PATTERN.match(unit_id):
            raise InvalidWorkUnitId(
                "must match ^[a-z][a-z0-9_]*$ (lowercase letter, then lowercase letters/numbers/underscores)",
                unit_id,
            )
        if len(unit_id) > MAX_WORK_UNIT_ID_LEN:
            raise InvalidWorkUnitId(f"must be at most {MAX_WORK_UNIT_ID_LEN} characters", unit_id)

    def list_ids(self) -> list[str]:
        """All persisted unit ids, sorted. Hidden/underscore directories are skipped."""
        if not self.tracks_dir.exists():
            return []
        return sorted(
            d.name for d in self.tracks_dir.iterdir()
            if d.is_dir() and not d.name.startswith((".", "_"))
        )

    def exists(self, unit_id: str) -> bool:
        return self.unit_dir(unit_id).is_dir()

    def issued_ids(self) -> set[str]:
        """Every id ever created in this tracker, including deleted ones."""
        issued = set(self.list_ids())
        if self.issued_ids_path is not None and self.issued_ids_path.exists():
            issued.update(
                line.strip() for line in self.issued_ids_path.read_text(encoding="utf-8").splitlines()
                if line.strip()
            )
        return issued

    def generate_id(self, title: str, now: datetime | None = None) -> str:
        """Build a fresh id '<slug>_<YYYYMMDD>' that has never been issued."""
        stamp = (now or utcnow()).strftime("%Y%m%d")
        base = f"{slugify_id(title)}_{stamp}"
        issued = self.issued_ids()
        candidate = base
        counter = 2
        while candidate in issued:
            candidate = f"{base}_{counter}"
            counter += 1
        return candidate

    # Metadata

    def create(
        self,
        unit_id: str,
        title: str,
        category: str,
        attributes: dict | None = None,
        now: datetime | None = None,
    ) -> WorkUnit:
        """Create a unit with spec placeholder, empty plan and Planning metadata.

        Raises:
            InvalidWorkUnitId: If unit_id is not a valid id
            AlreadyExists: If a unit with this id exists; nothing is touched
            ValueError: If title or category is empty, or the title spans lines
        """
        self.validate_id(unit_id)
        title = title.strip()
        category = category.strip()
        if not title:
            raise ValueError("Title must not be empty")
        if "\n" in title or "\r" in title:
            raise ValueError("Title must be a single line")
        if not category:
            raise ValueError("Category must not be empty")

        final_dir = self.unit_dir(unit_id)
        if final_dir.exists():
            raise AlreadyExists("work unit already exists", unit_id, "create")

        created = now or utcnow()
        unit = WorkUnit(
            id=unit_id,
            title=title,
            category=category,
            status=WorkUnitStatus.PLANNING,
            created_at=created,
            updated_at=created,
            attributes=dict(attributes or {}),
        )
        data = unit.to_dict()
        validate_before_write(data, "metadata", self.metadata_path(unit_id))

        self.tracks_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{unit_id}.", dir=str(self.tracks_dir)))
        try:
            staging.chmod(0o755)
            (staging / SPEC_FILE).write_text(spec_template(title), encoding="utf-8")
            plan_text = render_plan(Plan(title=f"Implementation Plan: {title}"))
            (staging / PLAN_FILE).write_text(plan_text + "\n" + PLAN_FORMAT_HINT, encoding="utf-8")
            (staging / METADATA_FILE).write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
            try:
                os.rename(staging, final_dir)
            except OSError:
                if final_dir.exists():
                    raise AlreadyExists("work unit already exists", unit_id, "create") from None
                raise
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        if self.issued_ids_path is not None:
            append_line(self.issued_ids_path, unit_id)

        logger.info(f"Created work unit {unit_id} ({category}): {title}")
        return unit

    def load(self, unit_id: str) -> WorkUnit:
        """Load a unit's metadata.

        Raises:
            NotFound: If no metadata record exists
            Corrupt: If the record is not valid JSON or does not match the schema
        """
        self.validate_id(unit_id)
        path = self.metadata_path(unit_id)
        if not path.exists():
            raise NotFound("no metadata record", unit_id, "load")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise Corrupt(f"invalid JSON in {path.name}: {e}", unit_id, "load") from None

        if not isinstance(data, dict):
            raise Corrupt(f"{path.name} is not a JSON object", unit_id, "load")

        try:
            validate(data, "metadata")
            unit = WorkUnit.from_dict(data)
        except (ValidationError, ValueError, KeyError) as e:
            raise Corrupt(str(e), unit_id, "load") from None

        if unit.id != unit_id:
            raise Corrupt(f"metadata id '{unit.id}' does not match directory", unit_id, "load")
        if unit.updated_at < unit.created_at:
            raise Corrupt("updated_at is earlier than created_at", unit_id, "load")

        return unit

    def save(self, unit: WorkUnit, preserve_updated_at: bool = False, now: datetime | None = None) -> WorkUnit:
        """Atomically overwrite a unit's metadata; returns the unit as written.

        updated_at is bumped to now (never below created_at) unless
        preserve_updated_at is set.

        Raises:
            NotFound: If the unit directory does not exist
        """
        self.validate_id(unit.id)
        if not self.unit_dir(unit.id).is_dir():
            raise NotFound("work unit directory does not exist", unit.id, "save")

        if not preserve_updated_at:
            unit = replace(unit, updated_at=max(now or utcnow(), unit.created_at))

        data = unit.to_dict()
        path = self.metadata_path(unit.id)
        validate_before_write(data, "metadata", path)
        atomic_write_text(path, json.dumps(data, indent=2) + "\n")
        return unit

    def delete(self, unit_id: str) -> bool:
        """Remove a unit's whole directory. Idempotent; returns False if absent."""
        self.validate_id(unit_id)
        unit_dir = self.unit_dir(unit_id)
        if not unit_dir.exists():
            logger.debug(f"Delete of {unit_id}: nothing to remove")
            return False

        # Rename first so the unit disappears in one step even if rmtree is interrupted
        trash = self.tracks_dir / f".trash-{unit_id}-{secrets.token_hex(4)}"
        os.rename(unit_dir, trash)
        shutil.rmtree(trash)
        logger.info(f"Deleted work unit {unit_id}")
        return True

    def cleanup_leftovers(self) -> list[str]:
        """Remove staging/trash directories left behind by interrupted operations."""
        removed = []
        if not self.tracks_dir.exists():
            return removed
        for d in self.tracks_dir.iterdir():
            if d.is_dir() and d.name.startswith("."):
                shutil.rmtree(d, ignore_errors=True)
                removed.append(d.name)
        if removed:
            logger.warning(f"Removed leftover directories: {', '.join(sorted(removed))}")
        return removed

    # Documents

    def read_plan(self, unit_id: str) -> Plan | None:
        """Parse the unit's plan. Returns None if the plan file is missing.

        Raises:
            NotFound: If the unit directory does not exist
            MalformedPlan: If plan.md violates the plan grammar
        """
        if not self.unit_dir(unit_id).is_dir():
            raise NotFound("work unit directory does not exist", unit_id, "read_plan")
        path = self.plan_path(unit_id)
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPlan(f"{path.name} is not valid UTF-8: {e}", work_unit_id=unit_id,
                                operation="read_plan") from None
        try:
            return parse_plan(text)
        except MalformedPlan as e:
            raise e.with_context(unit_id, "read_plan")

    def write_plan(self, unit_id: str, plan: Plan) -> None:
        if not self.unit_dir(unit_id).is_dir():
            raise NotFound("work unit directory does not exist", unit_id, "write_plan")
        atomic_write_text(self.plan_path(unit_id), render_plan(plan))

    def read_spec(self, unit_id: str) -> str | None:
        path = self.spec_path(unit_id)
        return path.read_text(encoding="utf-8") if path.exists() else None

    def write_spec(self, unit_id: str, text: str) -> None:
        if not self.unit_dir(unit_id).is_dir():
            raise NotFound("work unit directory does not exist", unit_id, "write_spec")
        atomic_write_text(self.spec_path(unit_id), text)
