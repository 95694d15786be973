"""Tests for knowledge ingestion: documents, free text and source maintenance."""
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from callsim.core.models import KbTypeEnum, KnowledgeChunk, KnowledgeSource, SourceKindEnum, SourceStatusEnum
from callsim.ingestion.chunker import ChunkerConfig
from callsim.ingestion.ingest_service import IngestConfig, KnowledgeIngestService
from callsim.resilience.error_handler import (
    EmbeddingServiceError,
    EmptyContentError,
    InputRejectedError,
    InvalidKbTypeError,
    MagicMismatchError,
    SourceNotFoundError,
)

TEXT = "Cancelamento exige protocolo. O cliente deve confirmar o plano. A fatura final chega em 7 dias."


@pytest.fixture
def service(embedder, session_factory):
    config = IngestConfig(chunker=ChunkerConfig(chunk_tokens=7, overlap_tokens=0))
    return KnowledgeIngestService(embedder, session_factory, config)


def _count(session_factory, model):
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestIngestText:
    """Tests for ingest_text()."""

    def test_stores_source_and_embedded_chunks(self, service, session_factory, tenant):
        result = service.ingest_text(tenant.id, "operator", "Regras de cancelamento", TEXT)

        assert result.success
        assert result.chunks_created == 3
        assert result.embeddings_generated == 3

        with session_factory() as session:
            source = session.get(KnowledgeSource, result.source_id)
            assert source.source_kind is SourceKindEnum.FREE_TEXT
            assert source.kb_type is KbTypeEnum.OPERATOR
            assert source.status is SourceStatusEnum.ACTIVE
            chunks = source.chunks
            assert [c.chunk_no for c in chunks] == [1, 2, 3]
            assert chunks[0].content == "Cancelamento exige protocolo."
            assert len(chunks[0].embedding) == 1536
            assert chunks[0].token_count == 3

    def test_single_embedding_request(self, service, embedder, tenant):
        service.ingest_text(tenant.id, "client", "T", TEXT)
        assert len(embedder.calls) == 1
        assert len(embedder.calls[0]) == 3

    def test_pii_masked_by_default(self, service, session_factory, tenant):
        result = service.ingest_text(tenant.id, "client", "Contato", "Escreva para ana@empresa.com hoje.")

        with session_factory() as session:
            content = session.get(KnowledgeSource, result.source_id).chunks[0].content
        assert "ana@" not in content
        assert ".com" in content

    def test_raw_mode_keeps_pii(self, service, session_factory, tenant):
        result = service.ingest_text(tenant.id, "client", "Contato", "Escreva para ana@empresa.com hoje.", pii_mode="raw")

        with session_factory() as session:
            content = session.get(KnowledgeSource, result.source_id).chunks[0].content
        assert "ana@empresa.com" in content

    def test_portuguese_kb_type_alias(self, service, session_factory, tenant):
        result = service.ingest_text(tenant.id, " Operador ", "T", "Texto curto.")

        with session_factory() as session:
            assert session.get(KnowledgeSource, result.source_id).kb_type is KbTypeEnum.OPERATOR

    def test_invalid_kb_type(self, service, tenant):
        with pytest.raises(InvalidKbTypeError):
            service.ingest_text(tenant.id, "supervisor", "T", TEXT)

    def test_title_required(self, service, tenant):
        with pytest.raises(InputRejectedError) as exc:
            service.ingest_text(tenant.id, "client", "  ", TEXT)
        assert exc.value.code == "TITLE_REQUIRED"

    def test_empty_text(self, service, session_factory, tenant):
        with pytest.raises(EmptyContentError):
            service.ingest_text(tenant.id, "client", "T", " \n\t ")
        assert _count(session_factory, KnowledgeSource) == 0

    def test_embedding_failure_stores_nothing(self, session_factory, tenant):
        failing = MagicMock()
        failing.embed.side_effect = EmbeddingServiceError(status=503, details="down")
        service = KnowledgeIngestService(failing, session_factory)

        with pytest.raises(EmbeddingServiceError) as exc:
            service.ingest_text(tenant.id, "client", "T", TEXT)

        assert exc.value.status == 503
        assert _count(session_factory, KnowledgeSource) == 0
        assert _count(session_factory, KnowledgeChunk) == 0

    def test_missing_vectors_stored_as_null(self, session_factory, tenant):
        short = MagicMock()
        short.embed.return_value = [[0.5] * 1536]
        service = KnowledgeIngestService(short, session_factory, IngestConfig(chunker=ChunkerConfig(7, 0)))

        result = service.ingest_text(tenant.id, "client", "T", TEXT)

        assert result.embeddings_generated == 1
        with session_factory() as session:
            chunks = session.get(KnowledgeSource, result.source_id).chunks
            assert chunks[0].embedding is not None
            assert chunks[1].embedding is None


class TestIngestDocument:
    """Tests for ingest_document()."""

    def test_text_upload(self, service, session_factory, tenant):
        content = "Manual do atendente.\nSempre confirme a senha.".encode("utf-8")

        result = service.ingest_document(tenant.id, "operator", content, "manual.txt", "text/plain")

        with session_factory() as session:
            source = session.get(KnowledgeSource, result.source_id)
            assert source.title == "manual.txt"
            assert source.source_kind is SourceKindEnum.DOCUMENT
            assert source.mime_type == "text/plain"
            assert source.size_bytes == len(content)

    def test_explicit_title(self, service, tenant):
        result = service.ingest_document(tenant.id, "operator", b"Texto.", "a.txt", "text/plain", title="Guia")
        assert result.title == "Guia"

    def test_rejected_upload_stores_nothing(self, service, session_factory, embedder, tenant):
        with pytest.raises(MagicMismatchError):
            service.ingest_document(tenant.id, "operator", b"not a pdf", "a.pdf", "application/pdf")

        assert embedder.calls == []
        assert _count(session_factory, KnowledgeSource) == 0


class TestSourceMaintenance:
    """Tests for status changes, content view and listing."""

    def test_archive_and_list(self, service, tenant):
        kept = service.ingest_text(tenant.id, "client", "Ativo", "Texto um.")
        archived = service.ingest_text(tenant.id, "client", "Arquivado", "Texto dois.")

        service.set_source_status(tenant.id, archived.source_id, "archived")

        active_ids = [s["id"] for s in service.list_sources(tenant.id)]
        archived_ids = [s["id"] for s in service.list_sources(tenant.id, status="archived")]
        assert active_ids == [str(kept.source_id)]
        assert archived_ids == [str(archived.source_id)]
        assert len(service.list_sources(tenant.id, status="all")) == 2

    def test_list_filters_kb_type(self, service, tenant):
        service.ingest_text(tenant.id, "client", "C", "Texto.")
        service.ingest_text(tenant.id, "operator", "O", "Texto.")

        assert [s["title"] for s in service.list_sources(tenant.id, kb_type="operador")] == ["O"]

    def test_invalid_status(self, service, tenant):
        result = service.ingest_text(tenant.id, "client", "T", "Texto.")
        with pytest.raises(InputRejectedError) as exc:
            service.set_source_status(tenant.id, result.source_id, "deleted")
        assert exc.value.code == "INVALID_STATUS"

    def test_other_tenant_cannot_touch_source(self, service, tenant):
        result = service.ingest_text(tenant.id, "client", "T", "Texto.")

        with pytest.raises(SourceNotFoundError):
            service.set_source_status(uuid4(), result.source_id, "archived")
        with pytest.raises(SourceNotFoundError):
            service.get_source_content(uuid4(), result.source_id)

    def test_get_source_content_joins_chunks(self, service, tenant):
        result = service.ingest_text(tenant.id, "client", "T", TEXT)

        view = service.get_source_content(tenant.id, result.source_id)

        assert view["chunks"] == 3
        assert view["content"].split("\n\n") == [
            "Cancelamento exige protocolo.",
            "O cliente deve confirmar o plano.",
            "A fatura final chega em 7 dias.",
        ]
