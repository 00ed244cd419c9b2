"""Fake implementations for testing the archive without the network."""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta

from hypothesis_archive.models.annotation import Annotation, Group
from hypothesis_archive.models.mutation import AddTags, Delete, MoveGroup, Mutation, RemoveTags
from hypothesis_archive.protocols import PageMark, RemotePage

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def make_annotation(
    annotation_id: str,
    *,
    minutes: int = 0,
    created_minutes: int | None = None,
    uri: str = "https://example.com/article",
    title: str = "An Article",
    text: str = "",
    quote: str = "",
    tags: Iterable[str] = (),
    group: str = "__world__",
) -> Annotation:
    """Build an annotation whose ``updated`` is BASE_TIME plus ``minutes``."""
    return Annotation(
        id=annotation_id,
        uri=uri,
        created=BASE_TIME + timedelta(minutes=minutes if created_minutes is None else created_minutes),
        updated=BASE_TIME + timedelta(minutes=minutes),
        group=group,
        title=title,
        text=text,
        quote=quote,
        tags=tuple(tags),
        user="acct:alice@hypothes.is",
    )


class FakeRemote:
    """In-memory fake for HypothesisApi.

    Holds the service-side copy of every annotation, serves it in pages
    sorted by ``updated`` and records all calls for assertions.

    ``failures`` are raised by apply_batch, one per call, before anything
    else happens. ``reject`` maps annotation ids to an error raised every
    time a batch touches that id. ``fetch_failures`` maps a fetch call
    number (1-based) to the error that call raises.
    """

    def __init__(self, annotations: Iterable[Annotation] = ()) -> None:
        self.annotations: dict[str, Annotation] = {a.id: a for a in annotations}
        self.groups = [Group(id="__world__", name="Public"), Group(id="g2", name="Reading")]
        self.fetch_calls: list[tuple[datetime | None, str | None, int]] = []
        self.batches: list[tuple[str, list[Mutation]]] = []
        self.apply_attempts = 0
        self.failures: list[BaseException] = []
        self.reject: dict[str, BaseException] = {}
        self.fetch_failures: dict[int, BaseException] = {}

    def put(self, *annotations: Annotation) -> None:
        for annotation in annotations:
            self.annotations[annotation.id] = annotation

    def fetch_page(self, since: datetime | None, state: str | None, limit: int) -> RemotePage:
        self.fetch_calls.append((since, state, limit))
        error = self.fetch_failures.pop(len(self.fetch_calls), None)
        if error is not None:
            raise error

        mark = PageMark.decode(state) if state else PageMark(boundary=since)
        rows = sorted(self.annotations.values(), key=lambda a: (a.updated, a.id))
        if mark.boundary is not None:
            rows = [a for a in rows if a.updated >= mark.boundary]
        rows = rows[mark.skip :]
        page = tuple(rows[:limit])
        return RemotePage(
            annotations=page,
            next_state=mark.advance(page).encode(),
            has_more=len(rows) > limit,
        )

    def apply_batch(self, group: str, edits: Sequence[Mutation]) -> None:
        self.apply_attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        for edit in edits:
            if edit.id in self.reject:
                raise self.reject[edit.id]

        self.batches.append((group, list(edits)))
        for edit in edits:
            current = self.annotations.get(edit.id)
            if current is None:
                continue
            if isinstance(edit, Delete):
                del self.annotations[edit.id]
            elif isinstance(edit, AddTags):
                self.annotations[edit.id] = current.with_tags((*current.tags, *edit.tags))
            elif isinstance(edit, RemoveTags):
                self.annotations[edit.id] = current.with_tags(
                    t for t in current.tags if t not in edit.tags
                )
            elif isinstance(edit, MoveGroup):
                self.annotations[edit.id] = current.with_group(edit.to_group)

    def list_groups(self) -> list[Group]:
        return list(self.groups)

    @property
    def edits(self) -> list[Mutation]:
        """Every accepted edit, flattened in the order it was applied."""
        return [edit for _group, batch in self.batches for edit in batch]


class RecordingSleep:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
