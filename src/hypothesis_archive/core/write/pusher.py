"""Replay the mutation log against the annotation service."""

import sqlite3
import time
from collections.abc import Callable, Iterator

from loguru import logger

from hypothesis_archive.core.database.store import (
    AnnotationStore,
    read_annotation,
    remove_annotation,
    write_annotation,
)
from hypothesis_archive.core.write.mutations import MutationLog, pop_mutations
from hypothesis_archive.core.write.retry import RetryPolicy
from hypothesis_archive.errors import RemoteError, SyncPartial
from hypothesis_archive.models.annotation import FlushSummary
from hypothesis_archive.models.mutation import (
    AddTags,
    Delete,
    MoveGroup,
    Mutation,
    QueuedMutation,
    RemoveTags,
)
from hypothesis_archive.protocols import RemoteClient


def _is_tag_edit(mutation: Mutation) -> bool:
    return isinstance(mutation, AddTags | RemoveTags)


def iter_batches(queue: list[QueuedMutation]) -> Iterator[tuple[int, list[QueuedMutation]]]:
    """Split the queue into remote calls.

    Adjacent tag edits of the same annotation share one batch; deletes and
    group moves always travel alone. Yields (1-based queue position, batch).
    """
    i = 0
    while i < len(queue):
        batch = [queue[i]]
        first = queue[i].mutation
        if _is_tag_edit(first):
            while (
                i + len(batch) < len(queue)
                and _is_tag_edit(queue[i + len(batch)].mutation)
                and queue[i + len(batch)].mutation.id == first.id
            ):
                batch.append(queue[i + len(batch)])
        yield i + 1, batch
        i += len(batch)


def apply_locally(conn: sqlite3.Connection, mutation: Mutation) -> None:
    """Mirror a service-confirmed edit onto the local record."""
    current = read_annotation(conn, mutation.id)
    if current is None:
        logger.warning("Confirmed {} but {} is no longer stored locally", mutation, mutation.id)
        return

    if isinstance(mutation, Delete):
        remove_annotation(conn, mutation.id)
    elif isinstance(mutation, AddTags):
        write_annotation(conn, current.with_tags((*current.tags, *mutation.tags)))
    elif isinstance(mutation, RemoveTags):
        write_annotation(
            conn, current.with_tags(t for t in current.tags if t not in mutation.tags)
        )
    elif isinstance(mutation, MoveGroup):
        write_annotation(conn, current.with_group(mutation.to_group))


class Pusher:
    """Drain the mutation log in FIFO order.

    A batch is removed from the log, and its effect written to the local
    store, in the same transaction and only after the service accepted it.
    """

    def __init__(
        self,
        store: AnnotationStore,
        log: MutationLog,
        client: RemoteClient,
        *,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._log = log
        self._client = client
        self._retry = retry or RetryPolicy()
        self._sleep = sleep

    def flush(self) -> FlushSummary:
        """Apply every queued mutation.

        Raises:
            SyncPartial: A batch was rejected or kept failing; it and everything
                after it stay queued.
        """
        queue = self._log.pending()
        if not queue:
            logger.debug("Mutation log is empty, nothing to flush")
            return FlushSummary()

        applied = 0
        calls = 0
        for index, batch in iter_batches(queue):
            head = batch[0]
            annotation = self._store.get(head.mutation.id)
            group = annotation.group if annotation else ""

            self._apply_remote(index, head, group, [q.mutation for q in batch])
            calls += 1

            with self._store.transaction() as conn:
                for queued in batch:
                    apply_locally(conn, queued.mutation)
                pop_mutations(conn, [q.seq for q in batch])
            applied += len(batch)
            logger.debug("Applied mutation(s) #{}", ", #".join(str(q.seq) for q in batch))

        logger.info("Flushed {} mutation(s) in {} call(s)", applied, calls)
        return FlushSummary(applied=applied, remote_calls=calls)

    def _apply_remote(
        self, index: int, head: QueuedMutation, group: str, edits: list[Mutation]
    ) -> None:
        delays = self._retry.delays()
        attempt = 0
        while True:
            try:
                self._client.apply_batch(group, edits)
                return
            except RemoteError as e:
                if not e.transient:
                    logger.error("Mutation #{} rejected: {}", head.seq, e)
                    raise SyncPartial(index, head, e, retryable=False) from e
                if attempt >= len(delays):
                    logger.error(
                        "Mutation #{} still failing after {} attempt(s): {}",
                        head.seq, attempt + 1, e,
                    )
                    raise SyncPartial(index, head, e) from e
                delay = delays[attempt]
                attempt += 1
                logger.warning(
                    "Mutation #{} failed ({}), retry {} in {:.1f}s", head.seq, e, attempt, delay
                )
                self._sleep(delay)
