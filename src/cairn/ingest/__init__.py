"""cairn ingest pipeline — extraction, chunking, dedup, locking and coordination."""

from cairn.ingest.chunker import SentenceChunker, TextChunk
from cairn.ingest.dedup import Deduplicator, hash_content, normalize_url
from cairn.ingest.extractors import ExtractedContent, detect_source_type, extract
from cairn.ingest.lock import IngestLock, NullLock
from cairn.ingest.pipeline import IngestionCoordinator, IngestResult, IngestRun, IngestState

__all__ = [
    "Deduplicator",
    "ExtractedContent",
    "IngestLock",
    "IngestResult",
    "IngestRun",
    "IngestState",
    "IngestionCoordinator",
    "NullLock",
    "SentenceChunker",
    "TextChunk",
    "detect_source_type",
    "extract",
    "hash_content",
    "normalize_url",
]
