"""Knowledge graph extraction and queries."""

from .graph_extractor import (
    EXTRACTION_SYSTEM_PROMPT,
    ExtractionSummary,
    GraphExtractionConfig,
    GraphExtractor,
    build_extraction_messages,
)
from .graph_queries import GraphExport, export_graph, get_neighbors

__all__ = [
    "EXTRACTION_SYSTEM_PROMPT",
    "ExtractionSummary",
    "GraphExtractionConfig",
    "GraphExtractor",
    "build_extraction_messages",
    "GraphExport",
    "export_graph",
    "get_neighbors",
]
