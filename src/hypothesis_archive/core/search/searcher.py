"""Compile annotation filters into SQL, including FTS5 full-text matching."""

import re

from hypothesis_archive.models.annotation import AnnotationFilter, format_timestamp


def _sanitize_fts_token(token: str) -> str:
    """Remove FTS5 special characters (whitelist approach)."""
    return re.sub(r"[^\w]", "", token, flags=re.UNICODE)


def prepare_fts_query(query: str) -> str:
    """Convert user query to FTS5 query with prefix matching.

    - 3+ char words get * suffix for prefix matching
    - Quoted phrases are preserved as-is
    - FTS5 operators AND, OR, NOT are preserved
    """
    if not query.strip():
        return ""

    tokens: list[str] = []
    i = 0
    while i < len(query):
        if query[i] == '"':
            end = query.find('"', i + 1)
            if end == -1:
                end = len(query)
            phrase = query[i + 1 : end].replace('"', "")
            if phrase.strip():
                tokens.append(f'"{phrase}"')
            i = end + 1
        elif query[i].isspace():
            i += 1
        else:
            end = i
            while end < len(query) and not query[end].isspace() and query[end] != '"':
                end += 1
            word = query[i:end]
            i = end

            if word.upper() in ("AND", "OR", "NOT"):
                tokens.append(word.upper())
                continue

            sanitized = _sanitize_fts_token(word)
            if not sanitized:
                continue
            if len(sanitized) >= 3:
                tokens.append(f"{sanitized}*")
            else:
                tokens.append(sanitized)

    # A dangling operator is a syntax error in FTS5.
    while tokens and tokens[-1] in ("AND", "OR", "NOT"):
        tokens.pop()
    while tokens and tokens[0] in ("AND", "OR"):
        tokens.pop(0)
    return " ".join(tokens)


def build_filter_sql(flt: AnnotationFilter) -> tuple[str, list[str | int]]:
    """Translate a filter into a WHERE clause over ``annotations a``.

    Returns:
        Tuple of (where_sql, params). ``where_sql`` is "1" for an empty filter.
    """
    where_clauses: list[str] = []
    params: list[str | int] = []

    fts_query = prepare_fts_query(flt.query)
    if fts_query:
        where_clauses.append(
            "a.rowid IN (SELECT rowid FROM annotations_fts WHERE annotations_fts MATCH ?)"
        )
        params.append(fts_query)
    elif flt.query.strip():
        # Query had nothing searchable in it; match nothing rather than everything.
        where_clauses.append("0")

    for tag in flt.tags:
        where_clauses.append(
            "EXISTS (SELECT 1 FROM annotation_tags t WHERE t.annotation_id = a.id AND t.tag = ?)"
        )
        params.append(tag)

    if flt.exclude_tags:
        placeholders = ",".join("?" * len(flt.exclude_tags))
        where_clauses.append(
            "NOT EXISTS (SELECT 1 FROM annotation_tags t "
            f"WHERE t.annotation_id = a.id AND t.tag IN ({placeholders}))"
        )
        params.extend(flt.exclude_tags)

    if flt.uri:
        where_clauses.append("instr(a.uri, ?) > 0")
        params.append(flt.uri)

    if flt.group:
        where_clauses.append("a.grp = ?")
        params.append(flt.group)

    if flt.since is not None:
        where_clauses.append("a.updated >= ?")
        params.append(format_timestamp(flt.since))

    if flt.before is not None:
        where_clauses.append("a.updated < ?")
        params.append(format_timestamp(flt.before))

    if flt.ids:
        placeholders = ",".join("?" * len(flt.ids))
        where_clauses.append(f"a.id IN ({placeholders})")
        params.extend(flt.ids)

    where_sql = " AND ".join(where_clauses) if where_clauses else "1"
    return where_sql, params
