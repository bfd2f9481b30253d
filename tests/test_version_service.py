"""Tests for the VersionGrouper."""

from __future__ import annotations

import json

import pytest

from pea.config import MAX_GROUPS, STORAGE_KEY
from pea.schemas.diff import DiffKind
from pea.services.version_service import VersionGrouper, similarity
from pea.store import MemoryKeyValueStore

CATS = "Write a blog post about cats"
CATS_ARTICLE = "Write a blog article about cats"
FINANCE = "Generate a financial risk report"


def _distinct_prompt(i: int) -> str:
    return f"prompt{i}alpha subject{i}beta"


def _stored_group(group_id: str, updated: str) -> dict:
    """A single-version group as it appears in the stored JSON document."""
    return {
        "id": group_id,
        "base_prompt": group_id,
        "versions": [
            {
                "id": f"{group_id}-v1",
                "base_prompt": group_id,
                "improved_prompt": "x",
                "model": "gpt",
                "version_number": 1,
                "timestamp": updated,
            }
        ],
        "created_at": updated,
        "updated_at": updated,
    }


class BrokenStore:
    """Store whose every operation fails."""

    def get(self, key: str) -> str | None:
        raise OSError("disk unavailable")

    def set(self, key: str, value: str) -> None:
        raise OSError("disk unavailable")

    def remove(self, key: str) -> None:
        raise OSError("disk unavailable")


class TestSimilarity:
    def test_similar_prompts(self) -> None:
        # {write, blog, about, cats} shared out of six words
        assert similarity(CATS, CATS_ARTICLE) == pytest.approx(4 / 6)

    def test_disjoint_prompts(self) -> None:
        assert similarity(CATS, FINANCE) == 0

    def test_case_insensitive(self) -> None:
        assert similarity("Hello World", "hello world") == 1

    def test_short_words_ignored(self) -> None:
        assert similarity("a an to", "a an to") == 0

    def test_empty_text(self) -> None:
        assert similarity("", CATS) == 0


class TestAddVersion:
    def test_first_version_creates_group(self, grouper: VersionGrouper) -> None:
        version = grouper.add_version(CATS, "improved", "gpt")
        assert version.version_number == 1
        assert len(grouper.groups) == 1
        group = grouper.groups[0]
        assert group.base_prompt == CATS
        assert group.created_at == group.updated_at == version.timestamp

    def test_identical_prompt_joins_group(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        second = grouper.add_version(CATS, "second", "claude")
        assert len(grouper.groups) == 1
        assert second.version_number == 2

    def test_similar_prompt_joins_group(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(CATS_ARTICLE, "second", "gpt")
        assert len(grouper.groups) == 1
        group = grouper.groups[0]
        assert [v.version_number for v in group.versions] == [1, 2]
        assert group.base_prompt == CATS

    def test_joining_bumps_updated_at_only(self, grouper: VersionGrouper) -> None:
        first = grouper.add_version(CATS, "first", "gpt")
        second = grouper.add_version(CATS_ARTICLE, "second", "gpt")
        group = grouper.groups[0]
        assert group.created_at == first.timestamp
        assert group.updated_at == second.timestamp

    def test_disjoint_prompts_make_separate_groups(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(FINANCE, "second", "gpt")
        assert len(grouper.groups) == 2
        assert [g.base_prompt for g in grouper.groups] == [FINANCE, CATS]

    def test_picks_most_similar_group(self, grouper: VersionGrouper) -> None:
        grouper.add_version("alpha beta gamma delta", "x", "gpt")
        grouper.add_version("alpha epsilon zeta theta", "x", "gpt")
        assert len(grouper.groups) == 2

        # 0.6 against the first group, 0.33 against the second
        grouper.add_version("alpha beta gamma epsilon", "x", "gpt")
        assert len(grouper.groups) == 2
        gamma = next(g for g in grouper.groups if g.base_prompt == "alpha beta gamma delta")
        assert len(gamma.versions) == 2

    def test_updated_group_moves_to_front(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(FINANCE, "second", "gpt")
        grouper.add_version(CATS, "third", "gpt")
        assert [g.base_prompt for g in grouper.groups] == [CATS, FINANCE]

    def test_cap_evicts_least_recently_updated(self, grouper: VersionGrouper) -> None:
        first = grouper.add_version(_distinct_prompt(0), "x", "gpt")
        for i in range(1, MAX_GROUPS + 1):
            grouper.add_version(_distinct_prompt(i), "x", "gpt")
        groups = grouper.groups
        assert len(groups) == MAX_GROUPS
        assert all(v.id != first.id for g in groups for v in g.versions)
        assert _distinct_prompt(0) not in [g.base_prompt for g in groups]

    def test_cap_keeps_recently_touched_group(self, grouper: VersionGrouper) -> None:
        grouper.add_version(_distinct_prompt(0), "x", "gpt")
        for i in range(1, MAX_GROUPS):
            grouper.add_version(_distinct_prompt(i), "x", "gpt")
        grouper.add_version(_distinct_prompt(0), "y", "gpt")
        grouper.add_version(_distinct_prompt(MAX_GROUPS), "x", "gpt")
        base_prompts = [g.base_prompt for g in grouper.groups]
        assert _distinct_prompt(0) in base_prompts
        assert _distinct_prompt(1) not in base_prompts

    def test_persists_every_mutation(
        self, grouper: VersionGrouper, store: MemoryKeyValueStore
    ) -> None:
        grouper.add_version(CATS, "first", "gpt")
        data = json.loads(store.get(STORAGE_KEY))
        assert len(data) == 1
        assert data[0]["base_prompt"] == CATS
        assert data[0]["versions"][0]["version_number"] == 1


class TestDelete:
    def test_delete_group(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(FINANCE, "second", "gpt")
        cats = next(g for g in grouper.groups if g.base_prompt == CATS)
        grouper.delete_group(cats.id)
        assert [g.base_prompt for g in grouper.groups] == [FINANCE]

    def test_delete_unknown_group_is_noop(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.delete_group("missing")
        assert len(grouper.groups) == 1

    def test_delete_only_version_removes_group(self, grouper: VersionGrouper) -> None:
        version = grouper.add_version(CATS, "first", "gpt")
        group = grouper.groups[0]
        grouper.delete_version(group.id, version.id)
        assert grouper.groups == []

    def test_delete_one_of_two_versions(self, grouper: VersionGrouper) -> None:
        first = grouper.add_version(CATS, "first", "gpt")
        second = grouper.add_version(CATS, "second", "gpt")
        group = grouper.groups[0]
        grouper.delete_version(group.id, first.id)
        remaining = grouper.groups[0].versions
        assert [v.id for v in remaining] == [second.id]
        assert remaining[0].version_number == 2
        assert remaining[0].improved_prompt == "second"

    def test_numbering_continues_after_delete(self, grouper: VersionGrouper) -> None:
        first = grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(CATS, "second", "gpt")
        grouper.delete_version(grouper.groups[0].id, first.id)
        third = grouper.add_version(CATS, "third", "gpt")
        assert third.version_number == 3

    def test_clear_all(self, grouper: VersionGrouper, store: MemoryKeyValueStore) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.clear_all()
        assert grouper.groups == []
        assert store.get(STORAGE_KEY) is None


class TestLoad:
    def test_round_trip_through_store(self, grouper: VersionGrouper, store, clock) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(FINANCE, "second", "claude")
        reloaded = VersionGrouper(store, clock=clock)
        assert reloaded.load() == grouper.groups

    def test_missing_key_loads_empty(self, grouper: VersionGrouper) -> None:
        assert grouper.load() == []

    def test_malformed_json_loads_empty(self, clock) -> None:
        store = MemoryKeyValueStore({STORAGE_KEY: "{not json"})
        grouper = VersionGrouper(store, clock=clock)
        assert grouper.load() == []

    def test_wrong_shape_loads_empty(self, clock) -> None:
        store = MemoryKeyValueStore({STORAGE_KEY: json.dumps([{"id": 1}])})
        grouper = VersionGrouper(store, clock=clock)
        assert grouper.load() == []

    def test_empty_group_in_storage_is_rejected(self, clock) -> None:
        stored = [
            {
                "id": "g1",
                "base_prompt": CATS,
                "versions": [],
                "created_at": "2024-01-01T00:00:00Z",
                "updated_at": "2024-01-01T00:00:00Z",
            }
        ]
        store = MemoryKeyValueStore({STORAGE_KEY: json.dumps(stored)})
        assert VersionGrouper(store, clock=clock).load() == []

    def test_load_sorts_by_updated_at(self, clock) -> None:
        stored = [
            _stored_group("old", "2024-01-01T00:00:00Z"),
            _stored_group("new", "2024-06-01T00:00:00Z"),
        ]
        store = MemoryKeyValueStore({STORAGE_KEY: json.dumps(stored)})
        groups = VersionGrouper(store, clock=clock).load()
        assert [g.id for g in groups] == ["new", "old"]

    def test_mixed_naive_and_aware_timestamps_load_empty(self, clock) -> None:
        stored = [
            _stored_group("naive", "2024-01-01T00:00:00"),
            _stored_group("aware", "2024-01-02T00:00:00Z"),
        ]
        store = MemoryKeyValueStore({STORAGE_KEY: json.dumps(stored)})
        assert VersionGrouper(store, clock=clock).load() == []

    def test_naive_timestamps_load_empty_and_accept_new_versions(self, clock) -> None:
        stored = [_stored_group("naive", "2024-01-01T00:00:00")]
        store = MemoryKeyValueStore({STORAGE_KEY: json.dumps(stored)})
        grouper = VersionGrouper(store, clock=clock)
        assert grouper.load() == []
        version = grouper.add_version("naive", "x", "gpt")
        assert version.version_number == 1
        assert len(grouper.groups) == 1


class TestStoreFailures:
    def test_unreadable_store_loads_empty(self, clock, caplog) -> None:
        grouper = VersionGrouper(BrokenStore(), clock=clock)
        assert grouper.load() == []
        assert "Failed to read version groups" in caplog.text

    def test_unwritable_store_does_not_raise(self, clock, caplog) -> None:
        grouper = VersionGrouper(BrokenStore(), clock=clock)
        version = grouper.add_version(CATS, "first", "gpt")
        assert version.version_number == 1
        assert len(grouper.groups) == 1
        assert "Failed to save version groups" in caplog.text

    def test_failed_write_is_recorded(self, clock) -> None:
        grouper = VersionGrouper(BrokenStore(), clock=clock)
        grouper.add_version(CATS, "first", "gpt")
        assert isinstance(grouper.save_error, OSError)
        assert grouper.save() is False

    def test_successful_write_clears_error(self, store: MemoryKeyValueStore, clock) -> None:
        grouper = VersionGrouper(store, clock=clock)
        grouper.save_error = OSError("earlier failure")
        grouper.add_version(CATS, "first", "gpt")
        assert grouper.save_error is None
        assert grouper.save() is True

    def test_clear_with_broken_store(self, clock) -> None:
        grouper = VersionGrouper(BrokenStore(), clock=clock)
        grouper.add_version(CATS, "first", "gpt")
        assert grouper.clear_all() is False
        assert grouper.groups == []
        assert isinstance(grouper.save_error, OSError)


class TestLookups:
    def test_get_group_not_found(self, grouper: VersionGrouper) -> None:
        with pytest.raises(ValueError, match="not found"):
            grouper.get_group("nope")

    def test_get_version(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(CATS, "second", "gpt")
        group_id = grouper.groups[0].id
        assert grouper.get_version(group_id, 2).improved_prompt == "second"
        with pytest.raises(ValueError, match="not found"):
            grouper.get_version(group_id, 3)

    def test_compare_versions(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "Write a short post", "gpt")
        grouper.add_version(CATS_ARTICLE, "Write a long post", "claude")
        group_id = grouper.groups[0].id
        result = grouper.compare_versions(group_id, 1, 2)
        assert result.first.version_number == 1
        assert result.second.version_number == 2
        removed = [s.text for s in result.improved_prompt_diff if s.kind is DiffKind.REMOVED]
        added = [s.text for s in result.improved_prompt_diff if s.kind is DiffKind.ADDED]
        assert removed == ["short"]
        assert added == ["long"]
        assert [s.text for s in result.base_prompt_diff if s.kind is DiffKind.ADDED] == ["article"]

    def test_summary(self, grouper: VersionGrouper) -> None:
        grouper.add_version(CATS, "first", "gpt")
        grouper.add_version(CATS, "second", "claude")
        grouper.add_version(FINANCE, "third", "claude")
        summary = grouper.summary()
        assert summary.total_groups == 2
        assert summary.total_versions == 3
        assert [(u.model, u.count) for u in summary.model_usage] == [("claude", 2), ("gpt", 1)]
