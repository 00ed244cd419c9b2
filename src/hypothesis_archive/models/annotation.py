"""Domain models for the Hypothesis archive."""

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(value: datetime) -> str:
    """Format a timestamp as fixed-width UTC ISO 8601 (sorts lexicographically)."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def normalize_uri(uri: str) -> str:
    return uri.strip().rstrip("/")


def strip_scheme(uri: str) -> str:
    """Drop the ``scheme://`` prefix, if any."""
    _scheme, sep, rest = uri.partition("://")
    return rest if sep else uri


def normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    """Strip whitespace, drop empties and deduplicate (case-sensitive, first wins)."""
    seen: dict[str, None] = {}
    for tag in tags:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return tuple(seen)


@dataclass(frozen=True)
class Annotation:
    """A single annotation pulled from the annotation service."""

    id: str
    uri: str
    created: datetime
    updated: datetime
    group: str
    title: str = ""
    text: str = ""
    quote: str = ""
    tags: tuple[str, ...] = ()
    user: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "uri", normalize_uri(self.uri))
        object.__setattr__(self, "tags", normalize_tags(self.tags))

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Annotation":
        """Build an annotation from the service's JSON representation."""
        quote = ""
        for target in data.get("target") or ():
            for selector in target.get("selector") or ():
                if selector.get("type") == "TextQuoteSelector":
                    quote = selector.get("exact", "")
                    break
            if quote:
                break

        titles = (data.get("document") or {}).get("title") or []
        return cls(
            id=data["id"],
            uri=data.get("uri", ""),
            created=parse_timestamp(data["created"]),
            updated=parse_timestamp(data["updated"]),
            group=data.get("group", ""),
            title=titles[0] if titles else "",
            text=data.get("text") or "",
            quote=quote,
            tags=tuple(data.get("tags") or ()),
            user=data.get("user", ""),
        )

    def with_tags(self, tags: Iterable[str]) -> "Annotation":
        return replace(self, tags=tuple(tags))

    def with_group(self, group: str) -> "Annotation":
        return replace(self, group=group)


class MergeOutcome(enum.Enum):
    """What ``upsert`` did with an incoming record."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class SyncCursor:
    """Bookmark of the last durably merged page.

    ``updated`` is the newest timestamp merged so far. ``state`` is the
    service's opaque pagination token for resuming a pull that was cut short;
    it is cleared once a pull reaches the end of the data.
    """

    updated: datetime | None = None
    state: str | None = None


@dataclass(frozen=True)
class AnnotationFilter:
    """Selection criteria for scanning the store. All criteria are ANDed."""

    query: str = ""
    tags: tuple[str, ...] = ()
    exclude_tags: tuple[str, ...] = ()
    uri: str = ""
    group: str = ""
    since: datetime | None = None
    before: datetime | None = None
    ids: tuple[str, ...] = ()
    limit: int | None = None


@dataclass(frozen=True)
class Group:
    """A group on the annotation service."""

    id: str
    name: str


@dataclass(frozen=True)
class SyncSummary:
    inserted: int = 0
    updated: int = 0
    superseded: int = 0
    pages: int = 0


@dataclass(frozen=True)
class FlushSummary:
    applied: int = 0
    remote_calls: int = 0


@dataclass(frozen=True)
class BuildSummary:
    """Counts from one materialization."""

    pages: int = 0
    sections: int = 0
    annotations: int = 0
    created: int = 0
    changed: int = 0
    unchanged: int = 0
    removed: int = 0
    files: tuple[str, ...] = field(default=(), repr=False)
