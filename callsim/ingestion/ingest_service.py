"""
CallSim - Knowledge Ingestion Pipeline
======================================

Takes an uploaded document or a free-text entry and populates the knowledge
base with a source row and its embedded chunks.

Pipeline: validate → extract → normalize → anonymize → chunk → embed → store.

Usage:
    from callsim.ingestion import KnowledgeIngestService

    service = KnowledgeIngestService.from_settings(settings)
    result = service.ingest_document(tenant_id, "client", content, "manual.pdf", "application/pdf")
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..core.db import coerce_kb_type, get_session, get_session_factory
from ..core.models import (
    KbTypeEnum,
    KnowledgeChunk,
    KnowledgeSource,
    SourceKindEnum,
    SourceStatusEnum,
)
from ..llm.embeddings import Embedder
from ..observability.logging_config import OperationLogger, bind_context
from ..resilience.error_handler import EmptyContentError, InputRejectedError, SourceNotFoundError
from ..security.pii import anonymize
from .canonicalizer import CanonicalizerConfig, DocumentCanonicalizer, normalize_text
from .chunker import ChunkerConfig, TextChunker

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class IngestConfig:
    """Configuration for the ingestion pipeline."""

    canonicalizer: CanonicalizerConfig = field(default_factory=CanonicalizerConfig)
    chunker: ChunkerConfig = field(default_factory=ChunkerConfig)

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestConfig":
        return cls(
            canonicalizer=CanonicalizerConfig.from_settings(settings),
            chunker=ChunkerConfig.from_settings(settings),
        )


@dataclass
class IngestResult:
    """Result of an ingestion operation."""

    success: bool
    source_id: UUID | None = None
    title: str | None = None
    chunks_created: int = 0
    embeddings_generated: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.__dict__)
        data["source_id"] = str(self.source_id) if self.source_id else None
        return data


def _source_to_dict(source: KnowledgeSource) -> dict[str, Any]:
    return {
        "id": str(source.id),
        "kb_type": source.kb_type.value,
        "source_kind": source.source_kind.value,
        "title": source.title,
        "original_filename": source.original_filename,
        "mime_type": source.mime_type,
        "size_bytes": source.size_bytes,
        "status": source.status.value,
        "created_at": source.created_at,
        "updated_at": source.updated_at,
    }


def _coerce_status(status) -> SourceStatusEnum:
    if isinstance(status, SourceStatusEnum):
        return status
    try:
        return SourceStatusEnum(str(status).strip().lower())
    except ValueError as e:
        raise InputRejectedError(
            f"Invalid source status: {status!r}",
            code="INVALID_STATUS",
            details={"allowed": [s.value for s in SourceStatusEnum]},
        ) from e


# =============================================================================
# INGEST SERVICE
# =============================================================================


class KnowledgeIngestService:
    """Create knowledge sources and their embedded chunks."""

    def __init__(
        self,
        embedder: Embedder,
        session_factory: sessionmaker | None = None,
        config: IngestConfig | None = None,
    ):
        self.embedder = embedder
        self.session_factory = session_factory or get_session_factory()
        self.config = config or IngestConfig()
        self.canonicalizer = DocumentCanonicalizer(self.config.canonicalizer)
        self.chunker = TextChunker.from_config(self.config.chunker)

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: sessionmaker | None = None) -> "KnowledgeIngestService":
        return cls(Embedder.from_settings(settings), session_factory, IngestConfig.from_settings(settings))

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def ingest_document(
        self,
        tenant_id: UUID,
        kb_type,
        content: bytes,
        filename: str,
        mime: str,
        title: str | None = None,
        pii_mode: str = "default",
    ) -> IngestResult:
        """
        Validate, extract and store an uploaded document.

        Raises:
            InputRejectedError subclasses for invalid uploads
            EmbeddingServiceError when the embedding service fails
        """
        kb = coerce_kb_type(kb_type)
        with OperationLogger(logger, "ingest_document", tenant_id=str(tenant_id), kb_type=kb.value,
                             filename=filename):
            self.canonicalizer.validate(content, filename, mime)
            text = self.canonicalizer.extract_text(content, filename, mime)
            return self._store(
                tenant_id,
                kb,
                text,
                pii_mode,
                source_kind=SourceKindEnum.DOCUMENT,
                title=(title or "").strip() or filename or "Documento",
                original_filename=filename,
                mime_type=str(mime or "").strip().lower() or None,
                size_bytes=len(content),
            )

    def ingest_text(
        self,
        tenant_id: UUID,
        kb_type,
        title: str,
        text: str,
        pii_mode: str = "default",
    ) -> IngestResult:
        """Store a free-text entry as a knowledge source."""
        kb = coerce_kb_type(kb_type)
        title = (title or "").strip()
        if not title:
            raise InputRejectedError("title is required", code="TITLE_REQUIRED")
        with OperationLogger(logger, "ingest_text", tenant_id=str(tenant_id), kb_type=kb.value):
            return self._store(
                tenant_id,
                kb,
                normalize_text(text or ""),
                pii_mode,
                source_kind=SourceKindEnum.FREE_TEXT,
                title=title,
            )

    def _store(
        self,
        tenant_id: UUID,
        kb: KbTypeEnum,
        text: str,
        pii_mode: str,
        source_kind: SourceKindEnum,
        title: str,
        original_filename: str | None = None,
        mime_type: str | None = None,
        size_bytes: int | None = None,
    ) -> IngestResult:
        start = time.monotonic()
        text = anonymize(text, pii_mode)
        if not text.strip():
            raise EmptyContentError("No text content to ingest")

        chunks = self.chunker.chunk(text)
        embeddings = self.embedder.embed([c["content"] for c in chunks])

        with get_session(self.session_factory) as session:
            source = KnowledgeSource(
                tenant_id=tenant_id,
                kb_type=kb,
                source_kind=source_kind,
                title=title[:500],
                original_filename=original_filename,
                mime_type=mime_type,
                size_bytes=size_bytes,
                status=SourceStatusEnum.ACTIVE,
            )
            session.add(source)
            session.flush()
            bind_context(source_id=source.id)

            for position, chunk in enumerate(chunks):
                session.add(
                    KnowledgeChunk(
                        source_id=source.id,
                        tenant_id=tenant_id,
                        kb_type=kb,
                        chunk_no=position + 1,
                        content=chunk["content"],
                        token_count=chunk["token_count"],
                        embedding=embeddings[position] if position < len(embeddings) else None,
                    )
                )
            source_id = source.id

        result = IngestResult(
            success=True,
            source_id=source_id,
            title=title,
            chunks_created=len(chunks),
            embeddings_generated=min(len(embeddings), len(chunks)),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info(
            f"Ingested source '{title}' with {result.chunks_created} chunks",
            extra={"extra_data": result.to_dict()},
        )
        return result

    # -------------------------------------------------------------------------
    # Maintenance and views
    # -------------------------------------------------------------------------

    def set_source_status(self, tenant_id: UUID, source_id: UUID, status) -> None:
        """Activate or archive a source. Archived sources are skipped by graph extraction."""
        new_status = _coerce_status(status)

        with get_session(self.session_factory) as session:
            source = self._get_source(session, tenant_id, source_id)
            previous = source.status
            source.status = new_status

        logger.info(
            f"Source {source_id} status {previous.value} -> {new_status.value}",
            extra={"extra_data": {"source_id": str(source_id), "tenant_id": str(tenant_id)}},
        )

    def get_source_content(self, tenant_id: UUID, source_id: UUID, pii_mode: str = "default") -> dict[str, Any]:
        """A source's chunks joined in order."""
        with get_session(self.session_factory) as session:
            source = self._get_source(session, tenant_id, source_id)
            parts = [chunk.content for chunk in source.chunks]
            view = _source_to_dict(source)

        view["chunks"] = len(parts)
        view["content"] = anonymize("\n\n".join(parts), pii_mode)
        return view

    def list_sources(self, tenant_id: UUID, kb_type=None, status: str = "active") -> list[dict[str, Any]]:
        stmt = select(KnowledgeSource).where(KnowledgeSource.tenant_id == tenant_id)
        if kb_type is not None:
            stmt = stmt.where(KnowledgeSource.kb_type == coerce_kb_type(kb_type))
        if status != "all":
            stmt = stmt.where(KnowledgeSource.status == _coerce_status(status))
        stmt = stmt.order_by(KnowledgeSource.created_at.desc(), KnowledgeSource.title)

        with get_session(self.session_factory) as session:
            return [_source_to_dict(source) for source in session.scalars(stmt)]

    @staticmethod
    def _get_source(session, tenant_id: UUID, source_id: UUID) -> KnowledgeSource:
        source = session.scalars(
            select(KnowledgeSource).where(
                KnowledgeSource.id == source_id,
                KnowledgeSource.tenant_id == tenant_id,
            )
        ).first()
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found for tenant")
        return source
