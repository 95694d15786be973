"""
CallSim Ingestion Module
========================

Document canonicalization, chunking, knowledge ingestion and transcript import.
"""

from .canonicalizer import (
    CanonicalizerConfig,
    DocumentCanonicalizer,
    extract_text,
    normalize_text,
    printable_ratio,
    validate,
)
from .chunker import ChunkerConfig, TextChunker, count_tokens, split_sentences
from .ingest_service import IngestConfig, IngestResult, KnowledgeIngestService
from .transcript_loader import ImportResult, TranscriptImportService
from .transcript_parser import (
    TranscriptParseResult,
    TranscriptRecord,
    TranscriptStats,
    detect_delimiter,
    normalize_header_name,
    normalize_role,
    parse_transcript_table,
    preview_headers,
)

__all__ = [
    "CanonicalizerConfig",
    "DocumentCanonicalizer",
    "extract_text",
    "normalize_text",
    "printable_ratio",
    "validate",
    "ChunkerConfig",
    "TextChunker",
    "count_tokens",
    "split_sentences",
    "IngestConfig",
    "IngestResult",
    "KnowledgeIngestService",
    "ImportResult",
    "TranscriptImportService",
    "TranscriptParseResult",
    "TranscriptRecord",
    "TranscriptStats",
    "detect_delimiter",
    "normalize_header_name",
    "normalize_role",
    "parse_transcript_table",
    "preview_headers",
]
