"""SQLite schema creation and migration for the annotation store."""

import sqlite3

SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS annotations (
    id TEXT PRIMARY KEY,
    uri TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    text TEXT NOT NULL DEFAULT '',
    quote TEXT NOT NULL DEFAULT '',
    tags TEXT NOT NULL DEFAULT '[]',
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    grp TEXT NOT NULL DEFAULT '',
    user TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_annotations_updated ON annotations(updated);
CREATE INDEX IF NOT EXISTS idx_annotations_uri ON annotations(uri);

CREATE TABLE IF NOT EXISTS annotation_tags (
    tag TEXT NOT NULL,
    annotation_id TEXT NOT NULL,
    PRIMARY KEY (tag, annotation_id),
    FOREIGN KEY (annotation_id) REFERENCES annotations(id)
);

CREATE INDEX IF NOT EXISTS idx_annotation_tags_id ON annotation_tags(annotation_id);

CREATE VIRTUAL TABLE IF NOT EXISTS annotations_fts USING fts5(
    title, text, quote, uri,
    content='annotations',
    content_rowid='rowid',
    tokenize='porter unicode61'
);

CREATE TABLE IF NOT EXISTS sync_state (
    slot INTEGER PRIMARY KEY CHECK (slot = 1),
    updated TEXT,
    state TEXT
);

CREATE TABLE IF NOT EXISTS mutations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    annotation_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    enqueued_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_FTS_TRIGGERS_SQL = """\
CREATE TRIGGER IF NOT EXISTS annotations_ai AFTER INSERT ON annotations BEGIN
    INSERT INTO annotations_fts(rowid, title, text, quote, uri)
    VALUES (new.rowid, new.title, new.text, new.quote, new.uri);
END;

CREATE TRIGGER IF NOT EXISTS annotations_ad AFTER DELETE ON annotations BEGIN
    INSERT INTO annotations_fts(annotations_fts, rowid, title, text, quote, uri)
    VALUES ('delete', old.rowid, old.title, old.text, old.quote, old.uri);
END;

CREATE TRIGGER IF NOT EXISTS annotations_au AFTER UPDATE ON annotations BEGIN
    INSERT INTO annotations_fts(annotations_fts, rowid, title, text, quote, uri)
    VALUES ('delete', old.rowid, old.title, old.text, old.quote, old.uri);
    INSERT INTO annotations_fts(rowid, title, text, quote, uri)
    VALUES (new.rowid, new.title, new.text, new.quote, new.uri);
END;
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables, indexes, and triggers."""
    conn.executescript(_SCHEMA_SQL)
    conn.executescript(_FTS_TRIGGERS_SQL)
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Return the current schema version, or None if metadata table doesn't exist."""
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        return None
    return int(row[0]) if row else None


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Create or migrate the database schema to the latest version."""
    version = get_schema_version(conn)
    if version is None:
        create_schema(conn)
    elif version > SCHEMA_VERSION:
        msg = f"Database schema version {version} is newer than supported ({SCHEMA_VERSION})"
        raise RuntimeError(msg)


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        (key, value),
    )
    conn.commit()
