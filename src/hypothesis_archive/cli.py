"""CLI for the Hypothesis archive (sync, build, search, curate, MCP server)."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from hypothesis_archive.config import load_config, with_overrides
from hypothesis_archive.errors import ArchiveError, SyncPartial
from hypothesis_archive.knowledge_base import KnowledgeBase
from hypothesis_archive.logging_config import configure_logging
from hypothesis_archive.models.annotation import (
    AnnotationFilter,
    format_timestamp,
    parse_timestamp,
)
from hypothesis_archive.models.mutation import AddTags, Delete, MoveGroup, Mutation, RemoveTags

app = typer.Typer(help="Hypothesis archive: sync your annotations and build a knowledge base.")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (TOML)"),
    ] = None,
) -> None:
    configure_logging(verbose=verbose)
    ctx.obj = config_path


@contextmanager
def _open_kb(ctx: typer.Context, **overrides: object) -> Iterator[KnowledgeBase]:
    """Open the knowledge base; any ArchiveError becomes exit code 1."""
    try:
        config = with_overrides(load_config(ctx.obj), **overrides)
        with KnowledgeBase(config) as kb:
            yield kb
    except SyncPartial as e:
        logger.error("{}", e)
        if e.retryable:
            logger.error("Run 'flush' again to retry the remaining mutations.")
        else:
            logger.error("Use 'discard {}' to drop the rejected mutation.", e.mutation.seq)
        raise typer.Exit(1) from e
    except ArchiveError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e


def _parse_date(value: str | None, option: str) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as e:
        logger.error("Invalid date for {}: {!r}", option, value)
        raise typer.Exit(1) from e


def _make_filter(
    *,
    query: str = "",
    tag: list[str] | None = None,
    exclude_tag: list[str] | None = None,
    uri: str | None = None,
    group: str | None = None,
    since: str | None = None,
    before: str | None = None,
    limit: int | None = None,
) -> AnnotationFilter:
    return AnnotationFilter(
        query=query,
        tags=tuple(tag or ()),
        exclude_tags=tuple(exclude_tag or ()),
        uri=uri or "",
        group=group or "",
        since=_parse_date(since, "--since"),
        before=_parse_date(before, "--before"),
        limit=limit,
    )


@app.command()
def sync(ctx: typer.Context) -> None:
    """Pull new and changed annotations from the service."""
    with _open_kb(ctx) as kb:
        summary = kb.sync()
    typer.echo(
        f"Synced {summary.pages} page(s): {summary.inserted} new, "
        f"{summary.updated} updated, {summary.superseded} older copies ignored"
    )


@app.command()
def make(
    ctx: typer.Context,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Where to write the knowledge base"),
    ] = None,
    query: str = typer.Option("", "--query", "-q", help="Full-text filter"),
    tag: Annotated[list[str] | None, typer.Option("--tag", "-t", help="Require tag")] = None,
    exclude_tag: Annotated[
        list[str] | None, typer.Option("--exclude-tag", "-T", help="Skip tag")
    ] = None,
    uri: Annotated[str | None, typer.Option("--uri", "-u", help="Only this URI")] = None,
    group: Annotated[str | None, typer.Option("--group", "-g", help="Only this group")] = None,
    since: Annotated[str | None, typer.Option("--since", help="Updated on/after date")] = None,
    before: Annotated[str | None, typer.Option("--before", help="Updated before date")] = None,
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Report changes only"),
) -> None:
    """Render the archive into a tree of documents."""
    flt = _make_filter(
        query=query,
        tag=tag,
        exclude_tag=exclude_tag,
        uri=uri,
        group=group,
        since=since,
        before=before,
    )
    with _open_kb(ctx, output_dir=output_dir.expanduser() if output_dir else None) as kb:
        summary = kb.materialize(flt, dry_run=dry_run)
        target = kb.config.output_dir
    typer.echo(
        f"{'Would write' if dry_run else 'Wrote'} {summary.pages} page(s) and "
        f"{summary.sections} index(es) for {summary.annotations} annotation(s) to {target}: "
        f"{summary.created} new, {summary.changed} changed, "
        f"{summary.unchanged} unchanged, {summary.removed} removed"
    )


@app.command()
def search(
    ctx: typer.Context,
    query: str = typer.Argument("", help="Search query"),
    tag: Annotated[list[str] | None, typer.Option("--tag", "-t", help="Require tag")] = None,
    exclude_tag: Annotated[
        list[str] | None, typer.Option("--exclude-tag", "-T", help="Skip tag")
    ] = None,
    uri: Annotated[str | None, typer.Option("--uri", "-u", help="Only this URI")] = None,
    group: Annotated[str | None, typer.Option("--group", "-g", help="Only this group")] = None,
    limit: int = typer.Option(20, "--limit", "-n", help="Max results"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Search the local archive."""
    flt = _make_filter(
        query=query, tag=tag, exclude_tag=exclude_tag, uri=uri, group=group, limit=limit
    )
    with _open_kb(ctx) as kb:
        results = kb.query(flt)

    if output_json:
        data = [
            {
                "id": a.id,
                "uri": a.uri,
                "title": a.title,
                "quote": a.quote,
                "text": a.text,
                "tags": list(a.tags),
                "group": a.group,
                "updated": format_timestamp(a.updated),
            }
            for a in results
        ]
        typer.echo(json.dumps(data, indent=2))
        return

    typer.echo(f"Found {len(results)} annotation(s):\n")
    for a in results:
        typer.echo(f"  [{a.title or a.uri}] {(a.text or a.quote)[:80]}")
        if a.tags:
            typer.echo(f"    tags: {', '.join(a.tags)}")
        typer.echo(f"    id={a.id}  {a.uri}")
        typer.echo()


def _enqueue(ctx: typer.Context, mutations: list[Mutation], *, flush: bool) -> None:
    with _open_kb(ctx) as kb:
        for mutation in mutations:
            try:
                seq = kb.enqueue_mutation(mutation)
            except ValueError as e:
                logger.error("{}", e)
                raise typer.Exit(1) from e
            typer.echo(f"Queued #{seq}: {mutation}")
        if flush:
            summary = kb.flush_mutations()
            typer.echo(f"Applied {summary.applied} mutation(s)")


_NoFlush = Annotated[
    bool, typer.Option("--no-flush", help="Queue only; push later with 'flush'")
]


@app.command()
def tag(
    ctx: typer.Context,
    annotation_id: str = typer.Argument(..., help="Annotation ID"),
    tags: list[str] = typer.Argument(..., help="Tags to add"),
    no_flush: _NoFlush = False,
) -> None:
    """Add tags to an annotation."""
    _enqueue(ctx, [AddTags(annotation_id, tuple(tags))], flush=not no_flush)


@app.command()
def untag(
    ctx: typer.Context,
    annotation_id: str = typer.Argument(..., help="Annotation ID"),
    tags: list[str] = typer.Argument(..., help="Tags to remove"),
    no_flush: _NoFlush = False,
) -> None:
    """Remove tags from an annotation."""
    _enqueue(ctx, [RemoveTags(annotation_id, tuple(tags))], flush=not no_flush)


@app.command()
def delete(
    ctx: typer.Context,
    annotation_ids: list[str] = typer.Argument(..., help="Annotation IDs"),
    no_flush: _NoFlush = False,
) -> None:
    """Delete annotations (locally once the service confirms)."""
    _enqueue(ctx, [Delete(i) for i in annotation_ids], flush=not no_flush)


@app.command()
def move(
    ctx: typer.Context,
    to_group: str = typer.Argument(..., help="Target group ID"),
    annotation_ids: list[str] = typer.Argument(..., help="Annotation IDs"),
    no_flush: _NoFlush = False,
) -> None:
    """Move annotations to another group."""
    _enqueue(ctx, [MoveGroup(i, to_group) for i in annotation_ids], flush=not no_flush)


@app.command()
def flush(ctx: typer.Context) -> None:
    """Push queued mutations to the service."""
    with _open_kb(ctx) as kb:
        summary = kb.flush_mutations()
    typer.echo(f"Applied {summary.applied} mutation(s) in {summary.remote_calls} call(s)")


@app.command()
def pending(ctx: typer.Context) -> None:
    """List queued mutations that have not been pushed yet."""
    with _open_kb(ctx) as kb:
        queue = kb.pending_mutations()
    typer.echo(f"{len(queue)} pending mutation(s)")
    for queued in queue:
        typer.echo(f"  #{queued.seq}  {format_timestamp(queued.enqueued_at)}  {queued.mutation}")


@app.command()
def discard(
    ctx: typer.Context,
    seq: int = typer.Argument(..., help="Mutation number from 'pending'"),
) -> None:
    """Drop a queued mutation without applying it."""
    with _open_kb(ctx) as kb:
        found = kb.discard_mutation(seq)
    if not found:
        typer.echo(f"No pending mutation #{seq}.")
        raise typer.Exit(1)
    typer.echo(f"Discarded #{seq}")


@app.command()
def tags(ctx: typer.Context) -> None:
    """List tags with usage counts."""
    with _open_kb(ctx) as kb:
        counts = kb.tags()
    for name, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        typer.echo(f"{count:6d}  {name}")


@app.command()
def uris(
    ctx: typer.Context,
    tag: Annotated[list[str] | None, typer.Option("--tag", "-t", help="Require tag")] = None,
) -> None:
    """List annotated URIs."""
    with _open_kb(ctx) as kb:
        found = kb.uris(_make_filter(tag=tag))
    for uri in found:
        typer.echo(uri)


@app.command()
def groups(ctx: typer.Context) -> None:
    """List the groups your account can see."""
    with _open_kb(ctx) as kb:
        found = kb.groups()
    for group in found:
        typer.echo(f"  {group.id}  {group.name}")


@app.command()
def serve() -> None:
    """Start the MCP server (stdio transport)."""
    from hypothesis_archive.mcp.server import run_mcp_server

    run_mcp_server()
