"""User-facing error text for the cairn CLI.

Each ``err_*`` helper returns Rich markup naming the cause first and the
fix second. Commands do not format exceptions themselves; they hand them
to :func:`render_error`::

    except (CairnError, ConfigError) as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
"""

from __future__ import annotations

from rich.markup import escape

from cairn.config import ConfigError
from cairn.errors import (
    CairnError,
    EmbeddingUnavailableError,
    ExtractionError,
    LockContentionError,
    PersistenceError,
)
from cairn.ingest.web import SsrfError


def err_no_api_key() -> str:
    """No embedding credential in the environment."""
    return (
        "[red]Error:[/] No embedding provider is configured.\n"
        "  Set at least one of:\n"
        "    export GEMINI_API_KEY=...\n"
        "    export OPENAI_API_KEY=sk-..."
    )


def err_embedding_unavailable(detail: str) -> str:
    """Every provider in the fallback chain failed."""
    return (
        f"[red]Error:[/] No embedding available: all providers failed.\n"
        f"  Last error: {escape(detail)}\n"
        "  Check your API keys and quota, then retry. Nothing was written."
    )


def err_lock_contention() -> str:
    """Another ingest holds a fresh lock marker."""
    return (
        "[red]Error:[/] Another ingestion is already in progress.\n"
        "  Wait for it to finish. A lock older than 15 minutes is cleared automatically."
    )


def err_extraction(message: str) -> str:
    return (
        f"[red]Error:[/] Could not extract content: {escape(message)}\n"
        "  Check the URL or path, or pass --type to force a source type."
    )


def err_ssrf_blocked(message: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Use a publicly reachable URL."
    )


def err_persistence(message: str) -> str:
    return (
        f"[red]Error:[/] Knowledge store operation failed: {escape(message)}\n"
        "  Check the database path (--db / CAIRN_DB_PATH) or Supabase settings."
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {escape(message)}\n"
        "  Fix cairn.yaml or ~/.cairn/config.yaml and retry."
    )


def err_source_not_found(source_id: int) -> str:
    """Source not found in the knowledge store."""
    return (
        f"[yellow]Source not found:[/] id {source_id} is not in the knowledge base.\n"
        "  Run:  cairn list  to see all ingested sources."
    )


def render_error(exc: Exception) -> str:
    """Map a cairn exception to its actionable message."""
    if isinstance(exc, ConfigError):
        return err_config(str(exc))
    if isinstance(exc, LockContentionError):
        return err_lock_contention()
    if isinstance(exc, EmbeddingUnavailableError):
        cause = exc.__cause__
        if cause is None:
            return err_no_api_key()
        return err_embedding_unavailable(str(cause))
    if isinstance(exc, SsrfError):
        return err_ssrf_blocked(exc.message)
    if isinstance(exc, ExtractionError):
        return err_extraction(str(exc))
    if isinstance(exc, PersistenceError):
        return err_persistence(str(exc))
    if isinstance(exc, CairnError):
        return f"[red]Error:[/] {escape(str(exc))}"
    return f"[red]Error:[/] {escape(type(exc).__name__)}: {escape(str(exc))}"
