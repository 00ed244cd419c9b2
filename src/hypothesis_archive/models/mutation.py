"""Local edit intents queued for replay against the annotation service."""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from hypothesis_archive.models.annotation import normalize_tags


@dataclass(frozen=True)
class AddTags:
    id: str
    tags: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", normalize_tags(self.tags))


@dataclass(frozen=True)
class RemoveTags:
    id: str
    tags: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", normalize_tags(self.tags))


@dataclass(frozen=True)
class Delete:
    id: str


@dataclass(frozen=True)
class MoveGroup:
    id: str
    to_group: str


Mutation = AddTags | RemoveTags | Delete | MoveGroup

_KINDS: dict[str, type] = {
    "add_tags": AddTags,
    "remove_tags": RemoveTags,
    "delete": Delete,
    "move_group": MoveGroup,
}
_KIND_BY_TYPE = {cls: kind for kind, cls in _KINDS.items()}


@dataclass(frozen=True)
class QueuedMutation:
    """A mutation as stored in the log, with its queue position."""

    seq: int
    mutation: Mutation
    enqueued_at: datetime


def mutation_kind(mutation: Mutation) -> str:
    return _KIND_BY_TYPE[type(mutation)]


def mutation_to_json(mutation: Mutation) -> str:
    """Serialize the mutation payload (everything except the kind and id)."""
    payload: dict[str, Any] = {}
    if isinstance(mutation, AddTags | RemoveTags):
        payload["tags"] = list(mutation.tags)
    elif isinstance(mutation, MoveGroup):
        payload["to_group"] = mutation.to_group
    return json.dumps(payload, sort_keys=True)


def mutation_from_json(kind: str, annotation_id: str, payload: str) -> Mutation:
    try:
        cls = _KINDS[kind]
    except KeyError:
        msg = f"unknown mutation kind: {kind!r}"
        raise ValueError(msg) from None
    data = json.loads(payload)
    if cls is AddTags or cls is RemoveTags:
        return cls(id=annotation_id, tags=tuple(data["tags"]))  # type: ignore[no-any-return]
    if cls is MoveGroup:
        return MoveGroup(id=annotation_id, to_group=data["to_group"])
    return Delete(id=annotation_id)
