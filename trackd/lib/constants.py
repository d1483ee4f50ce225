"""Shared constants for trackd."""

import re

# Work unit ID validation
WORK_UNIT_ID_PATTERN = re.compile(r'^[a-z][a-z0-9_]*$')
MAX_WORK_UNIT_ID_LEN = 48

# Tracker root layout
ROOT_DIR_NAME = ".trackd"
ROOT_ENV_VAR = "TRACKD_ROOT"
CONFIG_FILE = "trackd.env"
CATEGORIES_FILE = "categories.yaml"
REGISTRY_FILE = "tracks.md"
ISSUED_IDS_FILE = "issued_ids.txt"
TRACKS_DIR = "tracks"

# Per work unit files
SPEC_FILE = "spec.md"
PLAN_FILE = "plan.md"
METADATA_FILE = "metadata.json"
EVENTS_FILE = "events.jsonl"

DEFAULT_CATEGORIES = ("Feature", "BugFix", "Connector", "StorageComponent")
