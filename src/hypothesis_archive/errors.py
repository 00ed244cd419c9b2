"""Exception hierarchy for the Hypothesis archive."""

from typing import Any


class ArchiveError(Exception):
    """Base class for all errors raised by the archive."""


class ConfigError(ArchiveError):
    """The configuration file is malformed or has unknown keys."""


class StorageError(ArchiveError):
    """The local annotation store failed an I/O operation."""


class RemoteError(ArchiveError):
    """A call to the annotation service failed."""

    transient = False

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientRemoteError(RemoteError):
    """Network failure, timeout or rate limit. Safe to retry."""

    transient = True


class PermanentRemoteError(RemoteError):
    """Authentication, permission or not-found failure. Retrying will not help."""


class UnknownAnnotation(ArchiveError):
    """A mutation references an annotation id that is not in the local store."""

    def __init__(self, annotation_id: str) -> None:
        super().__init__(f"Couldn't find an annotation with ID {annotation_id!r}")
        self.annotation_id = annotation_id


class SyncError(ArchiveError):
    """A pull from the annotation service stopped before reaching the end."""

    def __init__(self, page: int, cause: BaseException) -> None:
        super().__init__(f"Sync failed on page {page}: {cause}")
        self.page = page
        self.cause = cause


class SyncPartial(ArchiveError):
    """Flushing the mutation log stopped at a mutation the service did not accept.

    The queue is left intact from ``mutation`` onwards.
    """

    def __init__(
        self,
        index: int,
        mutation: Any,
        cause: BaseException,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"Flush stopped at mutation #{index} ({mutation!r}): {cause}")
        self.index = index
        self.mutation = mutation
        self.cause = cause
        self.retryable = retryable


class BuildError(ArchiveError):
    """A materialization could not be completed; previous output is untouched."""


class TemplateError(BuildError):
    """A hierarchy expression or output template failed to compile or render."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"Template error in {source!r}: {message}")
        self.source = source
        self.message = message


class PathCollisionError(BuildError):
    """Two distinct hierarchy paths resolved to the same output file."""

    def __init__(self, path: str, first_id: str, second_id: str) -> None:
        super().__init__(
            f"Output path {path!r} claimed by both annotation {first_id!r} "
            f"and annotation {second_id!r}"
        )
        self.path = path
        self.first_id = first_id
        self.second_id = second_id
