"""
CallSim Knowledge Pipeline
==========================

Knowledge base and transcript-mining core for call-center simulation.

Modules:
    - core: Database models, schemas, and session utilities
    - ingestion: Document validation, text extraction, chunking, transcript tables
    - llm: Completion and embedding clients
    - retrieval: Vector similarity lookups over knowledge chunks
    - distillation: Knowledge-graph extraction and export
    - lab: Motive batch analysis over historical transcripts
    - observability: Structured logging with context propagation
    - resilience: Error taxonomy
    - security: PII anonymization
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .core.db import get_engine, get_session, init_db
from .core.models import (
    AnalysisError,
    AnalysisRun,
    Base,
    KnowledgeChunk,
    KnowledgeEdge,
    KnowledgeNode,
    KnowledgeSource,
    MotiveCache,
    MotiveProgress,
    MotiveResult,
    Tenant,
    TranscriptRow,
)

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Core models
    "Base",
    "Tenant",
    "KnowledgeSource",
    "KnowledgeChunk",
    "KnowledgeNode",
    "KnowledgeEdge",
    "AnalysisRun",
    "TranscriptRow",
    "MotiveProgress",
    "MotiveResult",
    "MotiveCache",
    "AnalysisError",
    # Database utilities
    "get_session",
    "get_engine",
    "init_db",
]
