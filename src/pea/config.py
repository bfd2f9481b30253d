"""Platform-aware default paths and tuning constants for pea."""

from __future__ import annotations

from pathlib import Path

from platformdirs import user_data_dir

_DB_FILENAME = "pea.db"
_APP_NAME = "pea"

# Key under which the version history is stored as one JSON document.
STORAGE_KEY = "promptVersionGroups"

# Maximum number of version groups kept; least recently updated are evicted.
MAX_GROUPS = 20

# Jaccard similarity a prompt must strictly exceed to join an existing group.
SIMILARITY_THRESHOLD = 0.3

# Above this many DP cells the diff uses the approximate common-token set.
LCS_CELL_LIMIT = 100_000


def default_db_path() -> Path:
    """Return the platform-appropriate default database path."""
    data_dir = Path(user_data_dir(_APP_NAME))
    return data_dir / _DB_FILENAME
