"""cairn list / stats / delete — source lifecycle management.

Deleting a source removes all of its chunks (ON DELETE CASCADE).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cairn.cli.errors import err_source_not_found
from cairn.cli.session import console, echo_json, open_kb
from cairn.db.models import SourceType


def list_cmd(
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum sources to show.")] = 50,
    offset: Annotated[int, typer.Option("--offset", min=0, help="Skip this many sources.")] = 0,
    source_type: Annotated[
        SourceType | None,
        typer.Option("--type", "-t", case_sensitive=False, help="Only this source type."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the SQLite knowledge base.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print sources as JSON.")] = False,
) -> None:
    """List ingested sources, newest first."""
    with open_kb(db) as kb:
        sources = kb.list_sources(
            limit=limit, offset=offset, source_type=source_type.value if source_type else None
        )

    if as_json:
        echo_json(
            [
                {
                    "id": s.id,
                    "title": s.title,
                    "url": s.url,
                    "sourceType": s.source_type,
                    "tags": s.tags,
                    "createdAt": s.created_at,
                }
                for s in sources
            ]
        )
        return
    if not sources:
        console.print("[yellow]No sources yet.[/]  Run:  cairn ingest <url|file|text>")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Added")
    for s in sources:
        table.add_row(str(s.id), s.source_type, escape(s.title or ""), s.created_at or "")
    console.print(table)


def stats_cmd(
    db: Annotated[Path | None, typer.Option("--db", help="Path to the SQLite knowledge base.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print stats as JSON.")] = False,
) -> None:
    """Show source and chunk totals."""
    with open_kb(db) as kb:
        stats = kb.stats()

    if as_json:
        echo_json(stats.to_dict())
        return
    lines = [
        f"Backend: [bold]{stats.backend}[/]",
        f"Sources: [bold]{stats.total_sources}[/]  |  Chunks: [bold]{stats.total_chunks:,}[/]",
    ]
    for kind, count in sorted(stats.by_type.items()):
        lines.append(f"  {kind:<8} {count}")
    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def delete_cmd(
    source_id: Annotated[int, typer.Argument(help="ID of the source to delete.")],
    db: Annotated[Path | None, typer.Option("--db", help="Path to the SQLite knowledge base.")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Delete a source and all its chunks."""
    with open_kb(db) as kb:
        source = kb.get_source(source_id)
        if source is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)

        console.print(f"\nDelete source {source_id}: [bold]{escape(source.title or '')}[/]")
        if not yes and not typer.confirm("Confirm deletion?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        changes = kb.delete_source(source_id)

    if not changes:
        console.print(err_source_not_found(source_id))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Deleted source {source_id} and its chunks")
