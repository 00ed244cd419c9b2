"""Tests for the SQLite annotation store."""

import itertools
from datetime import timedelta
from pathlib import Path

from hypothesis_archive.core.database.store import AnnotationStore
from hypothesis_archive.models.annotation import (
    Annotation,
    AnnotationFilter,
    MergeOutcome,
    SyncCursor,
)
from tests.unit.fakes import BASE_TIME, make_annotation


def test_upsert_reports_insert_update_and_superseded(store: AnnotationStore) -> None:
    assert store.upsert(make_annotation("a1", minutes=5, text="v1")) is MergeOutcome.INSERTED
    assert store.upsert(make_annotation("a1", minutes=6, text="v2")) is MergeOutcome.UPDATED
    assert store.upsert(make_annotation("a1", minutes=4, text="old")) is MergeOutcome.SUPERSEDED

    stored = store.get("a1")
    assert stored is not None
    assert stored.text == "v2"


def test_upsert_with_equal_updated_takes_incoming(store: AnnotationStore) -> None:
    store.upsert(make_annotation("a1", minutes=5, text="first"))
    outcome = store.upsert(make_annotation("a1", minutes=5, text="second"))

    assert outcome is MergeOutcome.UPDATED
    assert store.get("a1").text == "second"  # type: ignore[union-attr]


def test_merge_result_does_not_depend_on_arrival_order(tmp_path: Path) -> None:
    versions = [
        make_annotation("a1", minutes=1, text="one", tags=["x"]),
        make_annotation("a1", minutes=3, text="three", tags=["z"]),
        make_annotation("a1", minutes=2, text="two", tags=["y"]),
    ]
    results = set()
    for i, order in enumerate(itertools.permutations(versions)):
        with AnnotationStore(tmp_path / f"db{i}.sqlite") as s:
            for version in order:
                s.upsert(version)
            stored = s.get("a1")
            assert stored is not None
            results.add((stored.text, stored.tags, s.tags().get("z")))
    assert results == {("three", ("z",), 1)}


def test_update_rewrites_tag_index(store: AnnotationStore) -> None:
    store.upsert(make_annotation("a1", minutes=1, tags=["old", "keep"]))
    store.upsert(make_annotation("a1", minutes=2, tags=["keep", "new"]))

    assert store.tags() == {"keep": 1, "new": 1}
    assert store.annotation_tags("a1") == ("keep", "new")


def test_get_missing_returns_none(store: AnnotationStore) -> None:
    assert store.get("nope") is None


def test_delete(populated_store: AnnotationStore) -> None:
    assert populated_store.delete("a1") is True
    assert populated_store.delete("a1") is False
    assert populated_store.get("a1") is None
    assert "bar" not in populated_store.tags()


def test_scan_orders_by_id(populated_store: AnnotationStore) -> None:
    ids = [a.id for a in populated_store.scan()]
    assert ids == ["a1", "a2", "a3", "a4", "a5"]


def test_scan_is_a_snapshot(populated_store: AnnotationStore) -> None:
    results = populated_store.scan()
    populated_store.upsert(make_annotation("a0", minutes=9))
    populated_store.delete("a5")

    assert [a.id for a in results] == ["a1", "a2", "a3", "a4", "a5"]


def test_scan_filters(populated_store: AnnotationStore) -> None:
    def ids(**kwargs: object) -> list[str]:
        return [a.id for a in populated_store.scan(AnnotationFilter(**kwargs))]  # type: ignore[arg-type]

    assert ids(tags=("python",)) == ["a1", "a2"]
    assert ids(tags=("python", "bar")) == ["a1"]
    assert ids(exclude_tags=("python", "rust")) == ["a5"]
    assert ids(query="ownership") == ["a3"]
    assert ids(query="rust") == ["a3", "a4"]
    assert ids(uri="rust-lang.org") == ["a3", "a4"]
    assert ids(group="g2") == ["a4"]
    assert ids(since=BASE_TIME + timedelta(minutes=4)) == ["a4", "a5"]
    assert ids(before=BASE_TIME + timedelta(minutes=2)) == ["a1"]
    assert ids(ids=("a5", "a2")) == ["a2", "a5"]
    assert ids(limit=2) == ["a1", "a2"]


def test_query_without_searchable_terms_matches_nothing(
    populated_store: AnnotationStore,
) -> None:
    assert list(populated_store.scan(AnnotationFilter(query="!!! ???"))) == []


def test_fts_follows_updates(store: AnnotationStore) -> None:
    store.upsert(make_annotation("a1", minutes=1, text="elephant"))
    store.upsert(make_annotation("a1", minutes=2, text="giraffe"))

    assert [a.id for a in store.scan(AnnotationFilter(query="giraffe"))] == ["a1"]
    assert list(store.scan(AnnotationFilter(query="elephant"))) == []


def test_count_and_uris(populated_store: AnnotationStore) -> None:
    assert populated_store.count() == 5
    assert populated_store.count(AnnotationFilter(tags=("rust",))) == 2
    assert populated_store.uris(AnnotationFilter(tags=("python",))) == [
        "https://www.example.com/python"
    ]


def test_roundtrip_preserves_fields(store: AnnotationStore) -> None:
    original = make_annotation(
        "a1", minutes=7, created_minutes=1, text="t", quote="q", tags=["b", "a"], group="g2"
    )
    store.upsert(original)
    assert store.get("a1") == original


def test_cursor_defaults_to_empty(store: AnnotationStore) -> None:
    assert store.cursor_get() == SyncCursor()


def test_cursor_roundtrip_survives_reopen(tmp_path: Path) -> None:
    cursor = SyncCursor(updated=BASE_TIME, state="2024-03-01T12:00:00.000000+00:00")
    with AnnotationStore(tmp_path / "a.db") as s:
        s.cursor_set(cursor)
    with AnnotationStore(tmp_path / "a.db") as s:
        assert s.cursor_get() == cursor


def test_annotations_survive_reopen(tmp_path: Path, sample_annotations: list[Annotation]) -> None:
    with AnnotationStore(tmp_path / "a.db") as s:
        for annotation in sample_annotations:
            s.upsert(annotation)
    with AnnotationStore(tmp_path / "a.db") as s:
        assert list(s.scan()) == sample_annotations


def test_in_memory_store() -> None:
    with AnnotationStore(":memory:") as s:
        s.upsert(make_annotation("a1"))
        assert s.count() == 1
