"""Shared CLI plumbing: open the knowledge base and run coroutines."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console

from cairn.cli.errors import render_error
from cairn.config import ConfigError, load_config
from cairn.errors import CairnError
from cairn.knowledge import KnowledgeBase

console = Console()

_T = TypeVar("_T")


@contextmanager
def open_kb(db: Path | None = None) -> Iterator[KnowledgeBase]:
    """Yield a KnowledgeBase; render cairn errors and exit 1 on failure."""
    try:
        cfg = load_config()
        if db is not None:
            cfg.storage.db_path = str(db)
        kb = KnowledgeBase.from_config(cfg)
    except (CairnError, ConfigError) as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc

    try:
        yield kb
    except (CairnError, ConfigError) as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from exc
    finally:
        kb.close()


def run(coro: Coroutine[Any, Any, _T]) -> _T:
    return asyncio.run(coro)


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))
