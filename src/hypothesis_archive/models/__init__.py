"""Domain models for the Hypothesis archive."""

from hypothesis_archive.models.annotation import (
    Annotation,
    AnnotationFilter,
    BuildSummary,
    FlushSummary,
    Group,
    MergeOutcome,
    SyncCursor,
    SyncSummary,
)
from hypothesis_archive.models.mutation import (
    AddTags,
    Delete,
    MoveGroup,
    Mutation,
    QueuedMutation,
    RemoveTags,
)

__all__ = [
    "AddTags",
    "Annotation",
    "AnnotationFilter",
    "BuildSummary",
    "Delete",
    "FlushSummary",
    "Group",
    "MergeOutcome",
    "MoveGroup",
    "Mutation",
    "QueuedMutation",
    "RemoveTags",
    "SyncCursor",
    "SyncSummary",
]
