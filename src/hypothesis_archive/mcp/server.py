"""MCP server exposing search and curation tools over the local annotation archive."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from hypothesis_archive.config import load_config
from hypothesis_archive.errors import ArchiveError, SyncPartial
from hypothesis_archive.knowledge_base import KnowledgeBase
from hypothesis_archive.models.annotation import Annotation, AnnotationFilter, format_timestamp
from hypothesis_archive.models.mutation import (
    AddTags,
    Delete,
    MoveGroup,
    Mutation,
    QueuedMutation,
    RemoveTags,
    mutation_kind,
)


def _annotation_entry(annotation: Annotation, *, detailed: bool) -> dict[str, Any]:
    text = annotation.text if detailed else annotation.text[:200]
    entry: dict[str, Any] = {
        "id": annotation.id,
        "uri": annotation.uri,
        "title": annotation.title,
        "text": text,
        "tags": list(annotation.tags),
        "updated": format_timestamp(annotation.updated),
    }
    if detailed:
        entry["quote"] = annotation.quote
        entry["group"] = annotation.group
        entry["created"] = format_timestamp(annotation.created)
    return entry


def _queued_entry(queued: QueuedMutation) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "seq": queued.seq,
        "kind": mutation_kind(queued.mutation),
        "annotation_id": queued.mutation.id,
        "enqueued_at": format_timestamp(queued.enqueued_at),
    }
    if isinstance(queued.mutation, AddTags | RemoveTags):
        entry["tags"] = list(queued.mutation.tags)
    elif isinstance(queued.mutation, MoveGroup):
        entry["to_group"] = queued.mutation.to_group
    return entry


# --- Core functions (testable without MCP context) ---


def annotations_search(
    kb: KnowledgeBase,
    *,
    query: str = "",
    tags: list[str] | None = None,
    exclude_tags: list[str] | None = None,
    uri: str | None = None,
    group: str | None = None,
    limit: int = 20,
    response_format: str = "concise",
) -> dict[str, Any]:
    """Search archived annotations.

    Query syntax: Words are ANDed. Use "quoted phrases" for exact matches.
    Prefix matching is automatic for 3+ char words.

    Args:
        query: Search text (may be empty when filtering by tag or URI).
        tags: Annotations must carry all of these tags.
        exclude_tags: Annotations must carry none of these tags.
        uri: Restrict to one annotated page.
        group: Restrict to one group ID.
        limit: Max results (1-100, default 20).
        response_format: "concise" or "detailed".
    """
    if not (query.strip() or tags or exclude_tags or uri or group):
        return {"error": "No search query or filter provided.", "results": [], "count": 0}

    limit = max(1, min(limit, 100))
    flt = AnnotationFilter(
        query=query,
        tags=tuple(tags or ()),
        exclude_tags=tuple(exclude_tags or ()),
        uri=uri or "",
        group=group or "",
    )
    total = kb.store.count(flt)
    results = kb.query(replace(flt, limit=limit))
    detailed = response_format == "detailed"
    return {
        "results": [_annotation_entry(a, detailed=detailed) for a in results],
        "count": len(results),
        "total": total,
        "has_more": len(results) < total,
    }


def _enqueue(kb: KnowledgeBase, mutations: list[Mutation], *, flush: bool) -> dict[str, Any]:
    try:
        seqs = [kb.enqueue_mutation(m) for m in mutations]
    except (ArchiveError, ValueError) as e:
        return {"error": str(e)}
    result: dict[str, Any] = {"queued": seqs}
    if flush:
        result.update(annotations_flush(kb))
    return result


def annotations_tag(
    kb: KnowledgeBase, *, annotation_id: str, tags: list[str], flush: bool = True
) -> dict[str, Any]:
    """Add tags to an annotation, locally and on the service."""
    return _enqueue(kb, [AddTags(annotation_id, tuple(tags))], flush=flush)


def annotations_untag(
    kb: KnowledgeBase, *, annotation_id: str, tags: list[str], flush: bool = True
) -> dict[str, Any]:
    """Remove tags from an annotation."""
    return _enqueue(kb, [RemoveTags(annotation_id, tuple(tags))], flush=flush)


def annotations_delete(
    kb: KnowledgeBase, *, annotation_ids: list[str], flush: bool = True
) -> dict[str, Any]:
    """Delete annotations. The local copy goes once the service confirms."""
    return _enqueue(kb, [Delete(i) for i in annotation_ids], flush=flush)


def annotations_move(
    kb: KnowledgeBase, *, annotation_ids: list[str], to_group: str, flush: bool = True
) -> dict[str, Any]:
    """Move annotations to another group."""
    return _enqueue(kb, [MoveGroup(i, to_group) for i in annotation_ids], flush=flush)


def annotations_flush(kb: KnowledgeBase) -> dict[str, Any]:
    """Push every queued mutation to the service."""
    try:
        summary = kb.flush_mutations()
    except SyncPartial as e:
        return {
            "error": str(e),
            "stopped_at": e.mutation.seq,
            "retryable": e.retryable,
            "pending": len(kb.log),
        }
    except ArchiveError as e:
        return {"error": str(e), "pending": len(kb.log)}
    return {"applied": summary.applied, "remote_calls": summary.remote_calls, "pending": 0}


def annotations_pending(kb: KnowledgeBase) -> dict[str, Any]:
    """List mutations queued locally but not yet confirmed by the service."""
    queue = kb.pending_mutations()
    return {"pending": [_queued_entry(q) for q in queue], "count": len(queue)}


# --- MCP Server Setup ---


@dataclass
class ServerContext:
    """Shared resources for the MCP server lifetime."""

    kb: KnowledgeBase
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@asynccontextmanager
async def server_lifespan(_server: FastMCP) -> AsyncIterator[ServerContext]:
    """Open the knowledge base on startup, close on shutdown."""
    kb = KnowledgeBase(load_config())
    try:
        yield ServerContext(kb=kb)
    finally:
        kb.close()


mcp_server = FastMCP(
    "hypothesis-archive",
    instructions="""\
Tools for curating a local archive of Hypothesis web annotations.

1. Find annotations with annotations_search_tool (full-text, tags, URI).
2. Tag, untag, move or delete them by ID. Edits are queued locally and pushed
   to Hypothesis right away unless flush=false.
3. If a push fails, annotations_pending_tool shows what is still queued and
   annotations_flush_tool retries.
""",
    lifespan=server_lifespan,
)


def _ctx(mcp_ctx: Context) -> ServerContext:
    return mcp_ctx.request_context.lifespan_context  # type: ignore[return-value]


# --- MCP Tool Wrappers ---


@mcp_server.tool()
async def annotations_search_tool(
    ctx: Context,
    query: str = "",
    tags: list[str] | None = None,
    exclude_tags: list[str] | None = None,
    uri: str | None = None,
    group: str | None = None,
    limit: int = 20,
    response_format: str = "concise",
) -> dict[str, Any]:
    """Search archived Hypothesis annotations.

    Query syntax: Words are ANDed. Use "quoted phrases" for exact matches.

    Args:
        query: Search text.
        tags: Require all of these tags.
        exclude_tags: Skip annotations with any of these tags.
        uri: Restrict to one annotated page.
        group: Restrict to one group ID.
        limit: Max results (1-100, default 20).
        response_format: "concise" or "detailed".
    """
    return annotations_search(
        _ctx(ctx).kb,
        query=query,
        tags=tags,
        exclude_tags=exclude_tags,
        uri=uri,
        group=group,
        limit=limit,
        response_format=response_format,
    )


@mcp_server.tool()
async def annotations_tag_tool(
    ctx: Context, annotation_id: str, tags: list[str], flush: bool = True
) -> dict[str, Any]:
    """Add tags to an annotation.

    Args:
        annotation_id: Annotation ID from search results.
        tags: Tags to add.
        flush: Push to Hypothesis now (default) or only queue.
    """
    async with _ctx(ctx).write_lock:
        return annotations_tag(_ctx(ctx).kb, annotation_id=annotation_id, tags=tags, flush=flush)


@mcp_server.tool()
async def annotations_untag_tool(
    ctx: Context, annotation_id: str, tags: list[str], flush: bool = True
) -> dict[str, Any]:
    """Remove tags from an annotation.

    Args:
        annotation_id: Annotation ID from search results.
        tags: Tags to remove.
        flush: Push to Hypothesis now (default) or only queue.
    """
    async with _ctx(ctx).write_lock:
        return annotations_untag(
            _ctx(ctx).kb, annotation_id=annotation_id, tags=tags, flush=flush
        )


@mcp_server.tool()
async def annotations_delete_tool(
    ctx: Context, annotation_ids: list[str], flush: bool = True
) -> dict[str, Any]:
    """Delete annotations on Hypothesis and from the archive.

    Args:
        annotation_ids: Annotation IDs to delete.
        flush: Push to Hypothesis now (default) or only queue.
    """
    async with _ctx(ctx).write_lock:
        return annotations_delete(_ctx(ctx).kb, annotation_ids=annotation_ids, flush=flush)


@mcp_server.tool()
async def annotations_move_tool(
    ctx: Context, annotation_ids: list[str], to_group: str, flush: bool = True
) -> dict[str, Any]:
    """Move annotations to another group.

    Args:
        annotation_ids: Annotation IDs to move.
        to_group: Target group ID.
        flush: Push to Hypothesis now (default) or only queue.
    """
    async with _ctx(ctx).write_lock:
        return annotations_move(
            _ctx(ctx).kb, annotation_ids=annotation_ids, to_group=to_group, flush=flush
        )


@mcp_server.tool()
async def annotations_flush_tool(ctx: Context) -> dict[str, Any]:
    """Push queued edits to Hypothesis, oldest first."""
    async with _ctx(ctx).write_lock:
        return annotations_flush(_ctx(ctx).kb)


@mcp_server.tool()
async def annotations_pending_tool(ctx: Context) -> dict[str, Any]:
    """List edits that are queued but not yet confirmed by Hypothesis."""
    return annotations_pending(_ctx(ctx).kb)


def run_mcp_server() -> None:
    """Run the MCP server with stdio transport."""
    from hypothesis_archive.logging_config import configure_logging

    configure_logging(verbose=False)
    mcp_server.run(transport="stdio")
