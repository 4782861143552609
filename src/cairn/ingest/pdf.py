"""PDF text extraction via pypdf."""

from __future__ import annotations

import io
from pathlib import Path

import pypdf
from pypdf.errors import PdfReadError

from cairn.errors import ExtractionError


def extract_pdf_text(source: Path | str | bytes) -> str:
    """Extract all page text from a PDF file path or raw PDF bytes.

    Pages that yield no text (scanned images, etc.) are silently skipped.
    """
    stream = io.BytesIO(source) if isinstance(source, bytes) else source
    try:
        reader = pypdf.PdfReader(stream)
        parts = [
            (page.extract_text() or "").strip() for page in reader.pages
        ]
    except (PdfReadError, OSError) as exc:
        raise ExtractionError(f"Could not read PDF: {exc}", provider_name="pdf") from exc
    return "\n\n".join(p for p in parts if p)
