"""Ordered, durable queue of local edits awaiting confirmation by the service."""

import sqlite3
from datetime import UTC, datetime

from loguru import logger

from hypothesis_archive.core.database.store import AnnotationStore, read_annotation
from hypothesis_archive.errors import UnknownAnnotation
from hypothesis_archive.models.annotation import format_timestamp, parse_timestamp
from hypothesis_archive.models.mutation import (
    AddTags,
    Mutation,
    QueuedMutation,
    RemoveTags,
    mutation_from_json,
    mutation_kind,
    mutation_to_json,
)


class MutationLog:
    """FIFO log stored in the ``mutations`` table of the annotation store.

    Mutations are never coalesced: two edits of the same annotation are kept
    and replayed as two operations, in append order.
    """

    def __init__(self, store: AnnotationStore) -> None:
        self._store = store

    def append(self, mutation: Mutation) -> int:
        """Queue a mutation and return its sequence number.

        Raises:
            UnknownAnnotation: The annotation is not in the local store.
            ValueError: A tag mutation carries no tags.
        """
        if isinstance(mutation, AddTags | RemoveTags) and not mutation.tags:
            msg = f"{type(mutation).__name__} for {mutation.id!r} has no tags"
            raise ValueError(msg)

        with self._store.transaction() as conn:
            if read_annotation(conn, mutation.id) is None:
                raise UnknownAnnotation(mutation.id)
            cur = conn.execute(
                """INSERT INTO mutations (kind, annotation_id, payload, enqueued_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    mutation_kind(mutation),
                    mutation.id,
                    mutation_to_json(mutation),
                    format_timestamp(datetime.now(UTC)),
                ),
            )
            seq = cur.lastrowid
        logger.debug("Queued mutation #{}: {}", seq, mutation)
        return int(seq)  # type: ignore[arg-type]

    def pending(self) -> list[QueuedMutation]:
        """All queued mutations, oldest first."""
        with self._store.transaction() as conn:
            rows = conn.execute(
                "SELECT seq, kind, annotation_id, payload, enqueued_at FROM mutations ORDER BY seq"
            ).fetchall()
        return [
            QueuedMutation(
                seq=seq,
                mutation=mutation_from_json(kind, annotation_id, payload),
                enqueued_at=parse_timestamp(enqueued_at),
            )
            for seq, kind, annotation_id, payload, enqueued_at in rows
        ]

    def __len__(self) -> int:
        with self._store.transaction() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM mutations").fetchone()[0])

    def discard(self, seq: int) -> bool:
        """Drop one queued mutation without applying it anywhere."""
        with self._store.transaction() as conn:
            removed = pop_mutations(conn, [seq])
        if removed:
            logger.info("Discarded mutation #{}", seq)
        return removed > 0


def pop_mutations(conn: sqlite3.Connection, seqs: list[int]) -> int:
    """Delete queue rows inside the caller's transaction."""
    placeholders = ",".join("?" * len(seqs))
    cur = conn.execute(f"DELETE FROM mutations WHERE seq IN ({placeholders})", seqs)
    return cur.rowcount
