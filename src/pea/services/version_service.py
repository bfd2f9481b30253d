"""Version history of improved prompts, grouped by prompt similarity."""

from __future__ import annotations

import datetime
import logging
import uuid
from collections import Counter
from collections.abc import Callable

from pydantic import ValidationError

from pea.config import MAX_GROUPS, SIMILARITY_THRESHOLD, STORAGE_KEY
from pea.schemas.history import (
    GroupList,
    HistorySummary,
    ModelUsage,
    PromptVersion,
    PromptVersionGroup,
    VersionComparison,
)
from pea.services.diff_service import diff
from pea.store import KeyValueStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _words(text: str) -> set[str]:
    return {word for word in text.lower().split() if len(word) > 2}


def similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the lowercase words longer than two characters."""
    words1 = _words(text1)
    words2 = _words(text2)
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


class VersionGrouper:
    """Owns the list of version groups and keeps it persisted in a key-value store.

    Groups are always ordered most recently updated first. Store failures are
    logged and never raised; the in-memory collection stays authoritative and
    the failure is kept in ``save_error`` until the next successful write.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self._groups: list[PromptVersionGroup] = []
        self.save_error: Exception | None = None

    @property
    def groups(self) -> list[PromptVersionGroup]:
        return list(self._groups)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> list[PromptVersionGroup]:
        """Replace the collection with what the store holds.

        Missing, unreadable or malformed data gives an empty collection.
        """
        self._groups = []
        try:
            raw = self._store.get(STORAGE_KEY)
        except Exception:
            logger.exception("Failed to read version groups")
            return self.groups
        if not raw:
            return self.groups
        try:
            groups = GroupList.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding malformed version groups: %s", exc.errors()[0]["msg"])
            return self.groups
        self._groups = self._sorted(groups)[:MAX_GROUPS]
        return self.groups

    def save(self) -> bool:
        """Write the whole collection under ``STORAGE_KEY``. Returns False on failure."""
        try:
            self._store.set(STORAGE_KEY, GroupList.dump_json(self._groups).decode("utf-8"))
        except Exception as exc:
            logger.exception("Failed to save version groups")
            self.save_error = exc
            return False
        self.save_error = None
        return True

    @staticmethod
    def _sorted(groups: list[PromptVersionGroup]) -> list[PromptVersionGroup]:
        return sorted(groups, key=lambda g: g.updated_at, reverse=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _best_match(self, base_prompt: str) -> PromptVersionGroup | None:
        best: PromptVersionGroup | None = None
        best_score = SIMILARITY_THRESHOLD
        for group in self._groups:
            score = similarity(base_prompt, group.base_prompt)
            if score > best_score:
                best, best_score = group, score
        return best

    def add_version(self, base_prompt: str, improved_prompt: str, model: str) -> PromptVersion:
        """Record an improvement, joining the most similar group or starting a new one."""
        now = self._clock()
        group = self._best_match(base_prompt)
        # Equals len(versions) + 1 until a version is deleted; numbers are never reused.
        versions = group.versions if group is not None else []
        max_ver = max((v.version_number for v in versions), default=0)
        version = PromptVersion(
            id=uuid.uuid4().hex,
            base_prompt=base_prompt,
            improved_prompt=improved_prompt,
            model=model,
            version_number=max_ver + 1,
            timestamp=now,
        )

        if group is not None:
            group.versions.append(version)
            group.updated_at = now
            logger.debug("Added v%d to group %s", version.version_number, group.id)
            self._groups = self._sorted(self._groups)
        else:
            group = PromptVersionGroup(
                id=uuid.uuid4().hex,
                base_prompt=base_prompt,
                versions=[version],
                created_at=now,
                updated_at=now,
            )
            groups = self._sorted([group, *self._groups])
            for evicted in groups[MAX_GROUPS:]:
                logger.debug("Evicting version group %s", evicted.id)
            self._groups = groups[:MAX_GROUPS]

        self.save()
        return version

    def delete_group(self, group_id: str) -> None:
        """Remove a group and all its versions. Unknown ids are ignored."""
        self._groups = [g for g in self._groups if g.id != group_id]
        self.save()

    def delete_version(self, group_id: str, version_id: str) -> None:
        """Remove one version; a group left without versions is removed too."""
        remaining: list[PromptVersionGroup] = []
        for group in self._groups:
            if group.id == group_id:
                group.versions = [v for v in group.versions if v.id != version_id]
                if not group.versions:
                    continue
            remaining.append(group)
        self._groups = remaining
        self.save()

    def clear_all(self) -> bool:
        self._groups = []
        try:
            self._store.remove(STORAGE_KEY)
        except Exception as exc:
            logger.exception("Failed to clear version groups")
            self.save_error = exc
            return False
        self.save_error = None
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_group(self, group_id: str) -> PromptVersionGroup:
        """Fetch a group by id. Raises ValueError if not found."""
        for group in self._groups:
            if group.id == group_id:
                return group
        raise ValueError(f"Version group '{group_id}' not found.")

    def get_version(self, group_id: str, version_number: int) -> PromptVersion:
        """Fetch a version of a group by its number."""
        group = self.get_group(group_id)
        for version in group.versions:
            if version.version_number == version_number:
                return version
        raise ValueError(f"Version {version_number} not found in group '{group_id}'.")

    def compare_versions(self, group_id: str, v1: int, v2: int) -> VersionComparison:
        """Diff the base and improved prompts of two versions of a group."""
        first = self.get_version(group_id, v1)
        second = self.get_version(group_id, v2)
        return VersionComparison(
            group_id=group_id,
            first=first,
            second=second,
            base_prompt_diff=diff(first.base_prompt, second.base_prompt),
            improved_prompt_diff=diff(first.improved_prompt, second.improved_prompt),
        )

    def summary(self) -> HistorySummary:
        """Group and version totals plus how often each model was used."""
        usage = Counter(v.model for g in self._groups for v in g.versions)
        return HistorySummary(
            total_groups=len(self._groups),
            total_versions=sum(len(g.versions) for g in self._groups),
            model_usage=[
                ModelUsage(model=model, count=count)
                for model, count in sorted(usage.items(), key=lambda item: (-item[1], item[0]))
            ],
        )
