"""Durable local store for annotations, the sync cursor and the mutation queue.

One SQLite database holds three independently named structures: the
``annotations`` table keyed by id, the single-row ``sync_state`` slot and the
ordered ``mutations`` queue. Every write commits before returning, and all
access from this process goes through one lock.
"""

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType

from loguru import logger

from hypothesis_archive.core.database.schema import get_metadata, migrate_schema, set_metadata
from hypothesis_archive.core.search.searcher import build_filter_sql
from hypothesis_archive.errors import StorageError
from hypothesis_archive.models.annotation import (
    Annotation,
    AnnotationFilter,
    MergeOutcome,
    SyncCursor,
    format_timestamp,
    parse_timestamp,
)

_COLUMNS = "a.id, a.uri, a.title, a.text, a.quote, a.tags, a.created, a.updated, a.grp, a.user"


def _row_to_annotation(row: tuple) -> Annotation:
    return Annotation(
        id=row[0],
        uri=row[1],
        title=row[2],
        text=row[3],
        quote=row[4],
        tags=tuple(json.loads(row[5])),
        created=parse_timestamp(row[6]),
        updated=parse_timestamp(row[7]),
        group=row[8],
        user=row[9],
    )


def read_annotation(conn: sqlite3.Connection, annotation_id: str) -> Annotation | None:
    row = conn.execute(
        f"SELECT {_COLUMNS} FROM annotations a WHERE a.id = ?", (annotation_id,)
    ).fetchone()
    return _row_to_annotation(row) if row else None


def write_annotation(conn: sqlite3.Connection, annotation: Annotation) -> None:
    """Insert or overwrite one annotation row and its tag index entries."""
    conn.execute(
        """INSERT INTO annotations
           (id, uri, title, text, quote, tags, created, updated, grp, user)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               uri = excluded.uri, title = excluded.title, text = excluded.text,
               quote = excluded.quote, tags = excluded.tags, created = excluded.created,
               updated = excluded.updated, grp = excluded.grp, user = excluded.user""",
        (
            annotation.id,
            annotation.uri,
            annotation.title,
            annotation.text,
            annotation.quote,
            json.dumps(list(annotation.tags)),
            format_timestamp(annotation.created),
            format_timestamp(annotation.updated),
            annotation.group,
            annotation.user,
        ),
    )
    conn.execute("DELETE FROM annotation_tags WHERE annotation_id = ?", (annotation.id,))
    conn.executemany(
        "INSERT INTO annotation_tags (tag, annotation_id) VALUES (?, ?)",
        [(tag, annotation.id) for tag in annotation.tags],
    )


def remove_annotation(conn: sqlite3.Connection, annotation_id: str) -> bool:
    conn.execute("DELETE FROM annotation_tags WHERE annotation_id = ?", (annotation_id,))
    cur = conn.execute("DELETE FROM annotations WHERE id = ?", (annotation_id,))
    return cur.rowcount > 0


class AnnotationStore:
    """SQLite-backed annotation store.

    Usable as a context manager; closes the connection on exit.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            migrate_schema(self._conn)
        except sqlite3.Error as e:
            msg = f"Cannot open annotation store {self.db_path!r}: {e}"
            raise StorageError(msg) from e
        logger.debug("Store ready: {}", self.db_path)

    def __enter__(self) -> "AnnotationStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the store lock for one atomic unit of work.

        Commits when the block exits normally, rolls back otherwise. SQLite
        errors surface as StorageError.
        """
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(str(e)) from e
            except BaseException:
                self._conn.rollback()
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    # --- Annotations ---

    def get(self, annotation_id: str) -> Annotation | None:
        with self._reading() as conn:
            return read_annotation(conn, annotation_id)

    def upsert(self, annotation: Annotation) -> MergeOutcome:
        """Merge one record, last ``updated`` wins.

        A stored record with an equal or older ``updated`` is overwritten; a
        strictly newer one is kept and the incoming record discarded.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT updated FROM annotations WHERE id = ?", (annotation.id,)
            ).fetchone()
            if row is None:
                outcome = MergeOutcome.INSERTED
            elif parse_timestamp(row[0]) > annotation.updated:
                return MergeOutcome.SUPERSEDED
            else:
                outcome = MergeOutcome.UPDATED
            write_annotation(conn, annotation)
        return outcome

    def delete(self, annotation_id: str) -> bool:
        """Remove an annotation. Returns False if it was not stored."""
        with self.transaction() as conn:
            return remove_annotation(conn, annotation_id)

    def scan(self, flt: AnnotationFilter | None = None) -> Iterator[Annotation]:
        """Iterate annotations matching ``flt``, ordered by id.

        The rows are read by a single statement when this is called, so the
        result is a consistent snapshot. Each call queries afresh.
        """
        flt = flt or AnnotationFilter()
        where_sql, params = build_filter_sql(flt)
        sql = f"SELECT {_COLUMNS} FROM annotations a WHERE {where_sql} ORDER BY a.id"
        if flt.limit is not None:
            sql += " LIMIT ?"
            params.append(flt.limit)
        with self._reading() as conn:
            rows = conn.execute(sql, params).fetchall()
        return (_row_to_annotation(row) for row in rows)

    def count(self, flt: AnnotationFilter | None = None) -> int:
        where_sql, params = build_filter_sql(flt or AnnotationFilter())
        with self._reading() as conn:
            return int(
                conn.execute(
                    f"SELECT COUNT(*) FROM annotations a WHERE {where_sql}", params
                ).fetchone()[0]
            )

    def tags(self) -> dict[str, int]:
        """Return every recorded tag with the number of annotations carrying it."""
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT tag, COUNT(*) FROM annotation_tags GROUP BY tag ORDER BY tag"
            ).fetchall()
        return {tag: n for tag, n in rows}

    def annotation_tags(self, annotation_id: str) -> tuple[str, ...]:
        annotation = self.get(annotation_id)
        return annotation.tags if annotation else ()

    def uris(self, flt: AnnotationFilter | None = None) -> list[str]:
        """Distinct URIs of the matching annotations, sorted."""
        where_sql, params = build_filter_sql(flt or AnnotationFilter())
        with self._reading() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT a.uri FROM annotations a WHERE {where_sql} ORDER BY a.uri",
                params,
            ).fetchall()
        return [r[0] for r in rows]

    # --- Sync cursor ---

    def cursor_get(self) -> SyncCursor:
        with self._reading() as conn:
            row = conn.execute("SELECT updated, state FROM sync_state WHERE slot = 1").fetchone()
        if row is None:
            return SyncCursor()
        updated, state = row
        return SyncCursor(updated=parse_timestamp(updated) if updated else None, state=state)

    def cursor_set(self, cursor: SyncCursor) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_state (slot, updated, state) VALUES (1, ?, ?)",
                (
                    format_timestamp(cursor.updated) if cursor.updated else None,
                    cursor.state,
                ),
            )

    # --- Metadata ---

    def get_metadata(self, key: str) -> str | None:
        with self._reading() as conn:
            return get_metadata(conn, key)

    def set_metadata(self, key: str, value: str) -> None:
        with self._lock:
            try:
                set_metadata(self._conn, key, value)
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(str(e)) from e
