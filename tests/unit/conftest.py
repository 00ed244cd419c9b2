"""Shared test fixtures."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from hypothesis_archive.config import Config
from hypothesis_archive.core.database.store import AnnotationStore
from hypothesis_archive.knowledge_base import KnowledgeBase
from hypothesis_archive.models.annotation import Annotation
from tests.unit.fakes import FakeRemote, make_annotation


@pytest.fixture
def sample_annotations() -> list[Annotation]:
    """Five annotations across two sites, with strictly increasing ``updated``."""
    return [
        make_annotation(
            "a1",
            minutes=1,
            title="Python Tips",
            uri="https://www.example.com/python",
            text="Use type hints everywhere",
            quote="annotations are optional",
            tags=["python", "bar"],
        ),
        make_annotation(
            "a2",
            minutes=2,
            title="Python Tips",
            uri="https://www.example.com/python",
            text="Dataclasses are handy",
            tags=["python"],
        ),
        make_annotation(
            "a3",
            minutes=3,
            title="Rust Book",
            uri="https://doc.rust-lang.org/book/",
            text="Ownership rules",
            quote="Each value has an owner",
            tags=["rust"],
        ),
        make_annotation(
            "a4",
            minutes=4,
            title="Rust Book",
            uri="https://doc.rust-lang.org/book/",
            text="Borrowing",
            tags=["rust", "later"],
            group="g2",
        ),
        make_annotation(
            "a5",
            minutes=5,
            title="Recipes: Soup / Stew",
            uri="https://cooking.example.org/soup",
            text="Add salt late",
        ),
    ]


@pytest.fixture
def store(tmp_path: Path) -> Iterator[AnnotationStore]:
    """An empty annotation store in a temp directory."""
    with AnnotationStore(tmp_path / "annotations.db") as s:
        yield s


@pytest.fixture
def populated_store(
    store: AnnotationStore, sample_annotations: list[Annotation]
) -> AnnotationStore:
    for annotation in sample_annotations:
        store.upsert(annotation)
    return store


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(storage_dir=tmp_path / "data", output_dir=tmp_path / "kb")


@pytest.fixture
def remote(sample_annotations: list[Annotation]) -> FakeRemote:
    return FakeRemote(sample_annotations)


@pytest.fixture
def kb(config: Config, remote: FakeRemote) -> Iterator[KnowledgeBase]:
    """A knowledge base wired to the fake remote, already synced."""
    with KnowledgeBase(config, client=remote) as k:
        k.sync()
        yield k
