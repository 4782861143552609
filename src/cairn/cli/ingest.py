"""cairn ingest — add a URL, file or text to the knowledge base.

Source type detection:
  youtube.com/watch, youtu.be  → video
  twitter.com, x.com           → tweet
  *.pdf                        → pdf
  *.txt, *.md                  → text (file)
  other http(s)://             → article
  anything else                → raw text
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from cairn.cli.session import console, echo_json, open_kb, run
from cairn.db.models import SourceType


def ingest_cmd(
    source: Annotated[str, typer.Argument(help="URL, file path, or raw text to ingest.")],
    source_type: Annotated[
        SourceType | None,
        typer.Option("--type", "-t", case_sensitive=False, help="Force a source type."),
    ] = None,
    tag: Annotated[
        list[str] | None,
        typer.Option("--tag", help="Tag to attach to the source (repeatable)."),
    ] = None,
    metadata: Annotated[
        str | None,
        typer.Option("--metadata", help="JSON object stored with the source."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the SQLite knowledge base."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the result as JSON.")] = False,
) -> None:
    """Ingest one source: extract, dedup-check, chunk, embed and store it."""
    meta: dict = {}
    if metadata:
        try:
            meta = json.loads(metadata)
        except json.JSONDecodeError as exc:
            console.print(f"[red]Error:[/] --metadata is not valid JSON: {exc}")
            raise typer.Exit(1) from exc
        if not isinstance(meta, dict):
            console.print("[red]Error:[/] --metadata must be a JSON object.")
            raise typer.Exit(1)

    with open_kb(db) as kb:
        result = run(
            kb.ingest(
                source,
                source_type=source_type.value if source_type else None,
                tags=tag or [],
                metadata=meta,
            )
        )

    if as_json:
        echo_json(result.to_dict())
        return
    if result.status == "duplicate":
        console.print(f"[dim]↷ Duplicate — already stored as source {result.source_id}[/]")
        return
    console.print(
        f"[green]✓[/] Ingested [bold]{escape(result.title or '')}[/] "
        f"({result.source_type}, {result.chunk_count} chunks) → source {result.source_id}"
    )
