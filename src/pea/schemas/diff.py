from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict


class DiffKind(str, enum.Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"


class DiffSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: DiffKind
    text: str


class DiffSummary(BaseModel):
    """Word counts per segment kind, whitespace excluded."""

    unchanged: int = 0
    added: int = 0
    removed: int = 0
