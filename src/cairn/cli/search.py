"""cairn search / cairn query — semantic retrieval commands.

``search`` prints ranked excerpts. ``query`` additionally builds the
grounding context and the LLM instruction prompt; no answer is generated.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cairn.cli.session import console, echo_json, open_kb, run
from cairn.rag.similarity import SearchResult


def search_cmd(
    text: Annotated[str, typer.Argument(help="Search text.")],
    top_k: Annotated[int | None, typer.Option("--top-k", "-k", min=1, help="Maximum results.")] = None,
    max_chars: Annotated[
        int | None,
        typer.Option("--max-chars", min=1, help="Truncate each excerpt to this many characters."),
    ] = None,
    no_dedupe: Annotated[
        bool,
        typer.Option("--no-dedupe", help="Allow several chunks from the same source."),
    ] = False,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the SQLite knowledge base.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
) -> None:
    """Rank stored chunks against TEXT."""
    with open_kb(db) as kb:
        results = run(
            kb.search(
                text,
                top_k=top_k,
                max_chars_per_result=max_chars,
                dedupe_by_source=False if no_dedupe else None,
            )
        )

    if as_json:
        echo_json([r.to_dict() for r in results])
        return
    if not results:
        console.print("[yellow]No results.[/] Ingest sources first:  cairn ingest <url|file|text>")
        return
    console.print(_results_table(results))


def query_cmd(
    question: Annotated[str, typer.Argument(help="Question to answer from the knowledge base.")],
    top_k: Annotated[int | None, typer.Option("--top-k", "-k", min=1, help="Maximum sources.")] = None,
    max_chars: Annotated[
        int | None,
        typer.Option("--max-chars", min=1, help="Truncate each excerpt to this many characters."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the SQLite knowledge base.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the query envelope as JSON.")] = False,
) -> None:
    """Retrieve context for QUESTION and print an LLM-ready prompt."""
    with open_kb(db) as kb:
        result = run(kb.query(question, top_k=top_k, max_chars_per_result=max_chars))

    if as_json:
        echo_json(result.to_dict())
        return
    if not result.results:
        console.print("[yellow]No relevant sources found.[/]")
        return
    console.print(_results_table(result.results))
    console.print(Panel(escape(result.prompt or ""), title="[bold]Prompt[/]", expand=False))


def _results_table(results: list[SearchResult]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Excerpt")
    for i, r in enumerate(results, start=1):
        label = escape(r.title or "(untitled)")
        if r.url:
            label += f"\n[dim]{escape(r.url)}[/]"
        table.add_row(str(i), f"{r.similarity:.3f}", label, escape(r.content[:200]))
    return table
