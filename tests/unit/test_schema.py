"""Tests for database schema."""

import sqlite3

import pytest

from hypothesis_archive.core.database.schema import (
    SCHEMA_VERSION,
    create_schema,
    get_metadata,
    get_schema_version,
    migrate_schema,
    set_metadata,
)


def test_create_schema_creates_tables_and_fts() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    tables = {
        row[0]
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
    }
    assert {"annotations", "annotation_tags", "annotations_fts", "sync_state", "mutations"} <= tables


def test_migrate_schema_on_empty_db_creates_schema_and_sets_version() -> None:
    conn = sqlite3.connect(":memory:")
    assert get_schema_version(conn) is None
    migrate_schema(conn)
    assert get_schema_version(conn) == SCHEMA_VERSION


def test_migrate_schema_is_idempotent() -> None:
    conn = sqlite3.connect(":memory:")
    migrate_schema(conn)
    migrate_schema(conn)
    assert get_schema_version(conn) == SCHEMA_VERSION


def test_migrate_schema_refuses_newer_database() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    set_metadata(conn, "schema_version", str(SCHEMA_VERSION + 1))
    with pytest.raises(RuntimeError, match="newer than supported"):
        migrate_schema(conn)


def test_metadata_roundtrip() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    assert get_metadata(conn, "last_sync_at") is None
    set_metadata(conn, "last_sync_at", "2024-01-01")
    set_metadata(conn, "last_sync_at", "2024-01-02")
    assert get_metadata(conn, "last_sync_at") == "2024-01-02"


def test_mutation_seq_is_never_reused() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    insert = (
        "INSERT INTO mutations (kind, annotation_id, payload, enqueued_at) "
        "VALUES ('delete', 'a1', '{}', '2024-01-01')"
    )
    conn.execute(insert)
    conn.execute("DELETE FROM mutations")
    seq = conn.execute(insert).lastrowid
    assert seq == 2
