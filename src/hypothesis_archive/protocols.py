"""Protocols for dependency injection of the annotation service client."""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from hypothesis_archive.models.annotation import (
    Annotation,
    Group,
    format_timestamp,
    parse_timestamp,
)
from hypothesis_archive.models.mutation import Mutation


@dataclass(frozen=True)
class RemotePage:
    """One page of annotations, in ascending ``updated`` order."""

    annotations: tuple[Annotation, ...]
    next_state: str | None
    has_more: bool


@dataclass(frozen=True)
class PageMark:
    """Resume point in a listing ordered by ``updated``.

    The next page starts at the first record with ``updated >= boundary``,
    skipping the ``skip`` records stamped exactly ``boundary`` that earlier
    pages already returned. Records sharing a timestamp must come back in a
    stable order. Serialized into ``RemotePage.next_state`` as
    ``<timestamp>|<skip>``.
    """

    boundary: datetime | None = None
    skip: int = 0

    @classmethod
    def decode(cls, state: str) -> "PageMark":
        stamp, sep, skip = state.rpartition("|")
        if not sep or not skip.isdigit():
            msg = f"malformed page state: {state!r}"
            raise ValueError(msg)
        return cls(boundary=parse_timestamp(stamp), skip=int(skip))

    def encode(self) -> str | None:
        if self.boundary is None:
            return None
        return f"{format_timestamp(self.boundary)}|{self.skip}"

    def advance(self, annotations: Sequence[Annotation]) -> "PageMark":
        """The mark after ``annotations``, a page fetched from this mark."""
        if not annotations:
            return self
        last = annotations[-1].updated
        if last == self.boundary:
            return PageMark(boundary=last, skip=self.skip + len(annotations))
        return PageMark(boundary=last, skip=sum(1 for a in annotations if a.updated == last))


@runtime_checkable
class RemoteClient(Protocol):
    """Protocol for annotation service clients."""

    def fetch_page(self, since: datetime | None, state: str | None, limit: int) -> RemotePage:
        """Fetch annotations updated at or after ``since``, oldest first.

        ``state`` is the token from a previous page's ``next_state`` (an
        encoded PageMark); when given it takes precedence over ``since``.
        """
        ...

    def apply_batch(self, group: str, edits: Sequence[Mutation]) -> None:
        """Apply edits to annotations in ``group``, in order.

        Raises RemoteError on failure.
        """
        ...

    def list_groups(self) -> list[Group]:
        """List the groups the authenticated user belongs to."""
        ...
