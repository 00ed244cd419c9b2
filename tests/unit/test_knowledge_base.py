"""Tests for the KnowledgeBase facade."""

from hypothesis_archive.config import Config
from hypothesis_archive.knowledge_base import KnowledgeBase
from hypothesis_archive.models.annotation import AnnotationFilter
from hypothesis_archive.models.mutation import AddTags, Delete
from tests.unit.fakes import FakeRemote, make_annotation


def test_sync_query_and_tags(kb: KnowledgeBase) -> None:
    assert [a.id for a in kb.query(AnnotationFilter(tags=("rust",)))] == ["a3", "a4"]
    assert kb.tags()["python"] == 2
    assert kb.uris(AnnotationFilter(group="g2")) == ["https://doc.rust-lang.org/book"]


def test_tag_then_materialize_reflects_edit(kb: KnowledgeBase, remote: FakeRemote) -> None:
    kb.enqueue_mutation(AddTags("a3", ("favorite",)))
    kb.flush_mutations()

    summary = kb.materialize(AnnotationFilter(tags=("favorite",)))

    assert summary.annotations == 1
    assert "favorite" in remote.annotations["a3"].tags
    page = kb.config.output_dir / "doc.rust-lang.org" / "Rust Book.md"
    assert "Tags: rust, favorite" in page.read_text()


def test_pending_and_discard(kb: KnowledgeBase) -> None:
    seq = kb.enqueue_mutation(Delete("a1"))

    assert [q.seq for q in kb.pending_mutations()] == [seq]
    assert kb.discard_mutation(seq) is True
    assert kb.pending_mutations() == []


def test_materialize_dry_run_writes_nothing(kb: KnowledgeBase) -> None:
    summary = kb.materialize(dry_run=True)

    assert summary.created == 7
    assert not kb.config.output_dir.exists()


def test_groups_come_from_remote(kb: KnowledgeBase) -> None:
    assert [g.id for g in kb.groups()] == ["__world__", "g2"]


def test_offline_operations_never_create_a_client(config: Config) -> None:
    with KnowledgeBase(config) as kb:
        kb.store.upsert(make_annotation("a1"))
        kb.enqueue_mutation(AddTags("a1", ("x",)))
        kb.materialize()
        assert kb._client is None


def test_tagging_a_synced_annotation_sends_one_add_tags_edit(config: Config) -> None:
    remote = FakeRemote(
        [make_annotation("A1", uri="https://x.org/p", title="Foo", tags=["bar"])]
    )
    with KnowledgeBase(config, client=remote) as kb:
        kb.sync()
        kb.enqueue_mutation(AddTags("A1", ("baz",)))

        kb.flush_mutations()

        assert remote.edits == [AddTags("A1", ("baz",))]
        assert len(remote.batches) == 1
        assert set(kb.store.get("A1").tags) == {"bar", "baz"}  # type: ignore[union-attr]
