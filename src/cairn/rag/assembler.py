"""Grounding context and prompt assembly for downstream answer generation.

No generation happens here: the caller hands ``prompt`` to its own LLM.
"""

from __future__ import annotations

from cairn.rag.similarity import SearchResult

SECTION_SEPARATOR = "\n\n---\n\n"

PROMPT_TEMPLATE = """\
Answer the following question using ONLY the provided context. \
Cite which sources you used (e.g., "According to Source 1...").

If the context doesn't contain enough information to answer, say so.

Context:
{context}

Question: {question}

Answer:"""


def format_section(position: int, result: SearchResult) -> str:
    """One labelled context section: ``[Source i: title (url)]`` then the content."""
    url = f" ({result.url})" if result.url else ""
    return f"[Source {position}: {result.title}{url}]\n{result.content}"


def build_context(results: list[SearchResult]) -> str:
    """Join labelled sections in rank order (1-based labels)."""
    return SECTION_SEPARATOR.join(format_section(i, r) for i, r in enumerate(results, start=1))


def build_prompt(question: str, context: str) -> str:
    return PROMPT_TEMPLATE.format(context=context, question=question)
