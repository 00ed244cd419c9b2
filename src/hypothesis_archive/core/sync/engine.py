"""Incremental pull of remote annotations into the local store."""

import enum
from datetime import UTC, datetime

from loguru import logger

from hypothesis_archive.core.database.store import AnnotationStore
from hypothesis_archive.errors import SyncError
from hypothesis_archive.models.annotation import MergeOutcome, SyncCursor, SyncSummary
from hypothesis_archive.protocols import RemoteClient, RemotePage


class SyncState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    ADVANCING = "advancing"
    FAILED = "failed"


class SyncEngine:
    """Pull pages after the stored cursor and merge them, one page at a time.

    The cursor is only written after every record of a page has been merged,
    so an interrupted run re-fetches at most the page it was working on.
    Pages overlap at the boundary timestamp, and the client's page state
    counts the records already returned at that timestamp, so ties that
    straddle a page (or outnumber one) are neither skipped nor refetched forever.
    Remote-side deletions are not visible through the pull and are not
    reconciled.
    """

    def __init__(self, store: AnnotationStore, client: RemoteClient, *, page_size: int) -> None:
        self._store = store
        self._client = client
        self.page_size = page_size
        self.state = SyncState.IDLE
        self.page = 0

    def sync(self) -> SyncSummary:
        cursor = self._store.cursor_get()
        logger.debug("Sync starting from cursor {}", cursor)
        counts = dict.fromkeys(MergeOutcome, 0)
        self.page = 0

        while True:
            self.page += 1
            try:
                self.state = SyncState.FETCHING
                page = self._client.fetch_page(cursor.updated, cursor.state, self.page_size)

                self.state = SyncState.MERGING
                for annotation in page.annotations:
                    counts[self._store.upsert(annotation)] += 1

                self.state = SyncState.ADVANCING
                done = not page.has_more or len(page.annotations) < self.page_size
                cursor = _advance(cursor, page, done=done)
                self._store.cursor_set(cursor)
            except Exception as e:
                self.state = SyncState.FAILED
                logger.warning("Sync failed on page {}: {}", self.page, e)
                raise SyncError(self.page, e) from e

            logger.debug(
                "Page {}: {} annotation(s), cursor now {}",
                self.page, len(page.annotations), cursor.updated,
            )
            if done:
                break

        self.state = SyncState.IDLE
        self._store.set_metadata("last_sync_at", datetime.now(UTC).isoformat())
        summary = SyncSummary(
            inserted=counts[MergeOutcome.INSERTED],
            updated=counts[MergeOutcome.UPDATED],
            superseded=counts[MergeOutcome.SUPERSEDED],
            pages=self.page,
        )
        if summary.inserted or summary.superseded:
            logger.info(
                "Sync complete: {} new, {} updated, {} superseded over {} page(s)",
                summary.inserted, summary.updated, summary.superseded, summary.pages,
            )
        else:
            logger.debug("Sync complete: no new annotations ({} re-merged)", summary.updated)
        return summary


def _advance(cursor: SyncCursor, page: RemotePage, *, done: bool) -> SyncCursor:
    """Move the cursor past ``page``. Never moves the timestamp backwards."""
    newest = cursor.updated
    for annotation in page.annotations:
        if newest is None or annotation.updated > newest:
            newest = annotation.updated
    return SyncCursor(updated=newest, state=None if done else page.next_state)
