"""cairn CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer
from dotenv import find_dotenv, load_dotenv

from cairn.cli.ingest import ingest_cmd
from cairn.cli.search import query_cmd, search_cmd
from cairn.cli.sources import delete_cmd, list_cmd, stats_cmd
from cairn.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("cairn")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cairn {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="cairn",
    help=(
        "cairn — personal knowledge store with semantic search.\n\n"
        "  cairn ingest  Add a URL, file or text.\n"
        "  cairn query   Retrieve context and build an LLM-ready prompt."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pipeline progress (INFO level)."),
    ] = False,
) -> None:
    """cairn — personal knowledge store with semantic search."""
    load_dotenv(find_dotenv(usecwd=True))
    configure_logging("INFO" if verbose else "WARNING")


app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("query")(query_cmd)
app.command("list")(list_cmd)
app.command("stats")(stats_cmd)
app.command("delete")(delete_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed cairn version."""
    typer.echo(f"cairn {_installed_version()}")


if __name__ == "__main__":
    app()
