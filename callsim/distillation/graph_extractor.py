"""
CallSim - Knowledge Graph Extraction
====================================

Asks a language model to propose entities and relations for each knowledge
chunk and merges them idempotently into the tenant's graph.

The whole run shares one transaction. Each chunk runs inside a savepoint, and
so does each edge insert, so a failed model call, a rejected write or a
rejected edge only discards its own work. Node and edge uniqueness constraints keep repeated or
overlapping runs from creating duplicates.

Usage:
    extractor = GraphExtractor(CompletionClient.from_settings(settings))
    summary = extractor.run_extraction(tenant_id, "operator", limit_chunks=50)
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import func

from ..config import Settings
from ..core.db import coerce_kb_type, dialect_insert, get_session_factory
from ..core.models import (
    KbTypeEnum,
    KnowledgeChunk,
    KnowledgeEdge,
    KnowledgeNode,
    KnowledgeSource,
    SourceStatusEnum,
)
from ..core.schemas import ChatMessage, ChatRole, ExtractedEdge, GraphPayload, normalize_label
from ..llm.client import extract_json
from ..observability.logging_config import OperationLogger
from ..security.pii import anonymize

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """Você extrai conhecimento estruturado de textos em português (pt-BR).
Identifique entidades ou tópicos relevantes e as relações entre eles.

Responda SOMENTE com JSON válido, sem texto antes ou depois, neste formato:
{
  "nodes": [
    {"label": "nome curto da entidade", "node_type": "categoria opcional (pessoa, empresa, regra, processo, produto...)", "properties": {"chave": "valor"}}
  ],
  "edges": [
    {"src_label": "label do nó de origem", "dst_label": "label do nó de destino", "relation": "verbo curto", "properties": {"chave": "valor"}}
  ]
}

Regras:
- Não repita nós com o mesmo label.
- Prefira labels curtos e descritivos e relações curtas (ex.: "regula", "pertence", "usa", "depende", "contém").
- Sem relações, devolva "edges": [].
"""


class CompletionService(Protocol):
    def complete(self, messages: list[ChatMessage]) -> str: ...


@dataclass
class GraphExtractionConfig:
    limit_chunks: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphExtractionConfig":
        return cls(limit_chunks=max(1, settings.GRAPH_LIMIT_CHUNKS))


@dataclass
class ExtractionSummary:
    """Result of an extraction run."""

    processed: int = 0
    nodes_created: int = 0
    edges_created: int = 0
    chunks_failed: int = 0
    edges_failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items()}

    def add(self, other: "ExtractionSummary") -> None:
        self.nodes_created += other.nodes_created
        self.edges_created += other.edges_created
        self.edges_failed += other.edges_failed


def build_extraction_messages(text: str) -> list[ChatMessage]:
    return [
        ChatMessage(role=ChatRole.SYSTEM, content=EXTRACTION_SYSTEM_PROMPT),
        ChatMessage(role=ChatRole.USER, content=f'Texto:\n"""\n{text}\n"""'),
    ]


class GraphExtractor:
    """Build the knowledge graph from stored chunks."""

    def __init__(
        self,
        llm: CompletionService,
        session_factory: sessionmaker | None = None,
        config: GraphExtractionConfig | None = None,
    ):
        self.llm = llm
        self.session_factory = session_factory or get_session_factory()
        self.config = config or GraphExtractionConfig()

    def run_extraction(
        self,
        tenant_id: UUID,
        kb_type,
        limit_chunks: int | None = None,
        pii_mode: str = "default",
        source_id: UUID | None = None,
    ) -> ExtractionSummary:
        """
        Extract nodes and edges from up to limit_chunks active chunks, most recent first.

        Raises:
            InvalidKbTypeError: kb_type is not client/operator
            SQLAlchemyError: chunk selection or the final commit failed (run rolled back)
        """
        kb = coerce_kb_type(kb_type)
        limit = max(1, int(limit_chunks if limit_chunks is not None else self.config.limit_chunks))
        summary = ExtractionSummary()

        with OperationLogger(logger, "graph_extraction", tenant_id=str(tenant_id), kb_type=kb.value,
                             source_id=str(source_id) if source_id else None):
            with self.session_factory() as session, session.begin():
                chunks = self._select_chunks(session, tenant_id, kb, limit, source_id)
                if not chunks:
                    logger.info("No active chunks to extract")
                    return summary

                for chunk in chunks:
                    summary.processed += 1
                    self._process_chunk(session, tenant_id, kb, chunk, pii_mode, summary)

        logger.info(
            f"Graph extraction finished: {summary.processed} chunks, "
            f"{summary.nodes_created} nodes, {summary.edges_created} edges",
            extra={"extra_data": summary.to_dict()},
        )
        return summary

    # -------------------------------------------------------------------------
    # Chunk processing
    # -------------------------------------------------------------------------

    @staticmethod
    def _select_chunks(session: Session, tenant_id: UUID, kb: KbTypeEnum, limit: int, source_id: UUID | None):
        stmt = (
            select(KnowledgeChunk.id, KnowledgeChunk.source_id, KnowledgeChunk.content)
            .join(KnowledgeSource, KnowledgeSource.id == KnowledgeChunk.source_id)
            .where(
                KnowledgeChunk.tenant_id == tenant_id,
                KnowledgeChunk.kb_type == kb,
                KnowledgeSource.status == SourceStatusEnum.ACTIVE,
            )
        )
        if source_id is not None:
            stmt = stmt.where(KnowledgeChunk.source_id == source_id)
        stmt = stmt.order_by(KnowledgeChunk.created_at.desc(), KnowledgeChunk.chunk_no.asc()).limit(limit)
        return session.execute(stmt).all()

    def _extract(self, text: str) -> GraphPayload:
        reply = self.llm.complete(build_extraction_messages(text))
        return GraphPayload.from_model_output(extract_json(reply))

    def _process_chunk(self, session: Session, tenant_id: UUID, kb: KbTypeEnum, chunk, pii_mode: str,
                       summary: ExtractionSummary) -> None:
        text = chunk.content if pii_mode == "raw" else anonymize(chunk.content)
        counts = ExtractionSummary()

        try:
            with session.begin_nested():
                payload = self._extract(text)
                self._store_payload(session, tenant_id, kb, chunk.source_id, payload, counts)
        except Exception as e:
            summary.chunks_failed += 1
            logger.warning(
                f"Skipping chunk {chunk.id}: {e}",
                extra={"extra_data": {"chunk_id": str(chunk.id), "code": getattr(e, "code", type(e).__name__)}},
            )
            return

        summary.add(counts)

    def _store_payload(self, session: Session, tenant_id: UUID, kb: KbTypeEnum, source_id: UUID,
                       payload: GraphPayload, counts: ExtractionSummary) -> None:
        node_ids: dict[str, UUID] = {}
        for node in payload.nodes:
            if node.key in node_ids:
                continue
            node_ids[node.key], created = self._upsert_node(
                session, tenant_id, kb, node.label, node.node_type, node.properties, source_id
            )
            counts.nodes_created += int(created)

        for edge in payload.edges:
            src_id = self._resolve_node(session, tenant_id, kb, edge.src_label, node_ids, source_id, counts)
            dst_id = self._resolve_node(session, tenant_id, kb, edge.dst_label, node_ids, source_id, counts)
            if self._insert_edge(session, tenant_id, kb, src_id, dst_id, edge, counts):
                counts.edges_created += 1

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    @staticmethod
    def _find_node(session: Session, tenant_id: UUID, kb: KbTypeEnum, key: str) -> KnowledgeNode | None:
        return session.scalars(
            select(KnowledgeNode).where(
                KnowledgeNode.tenant_id == tenant_id,
                KnowledgeNode.kb_type == kb,
                KnowledgeNode.label_key == key,
            )
        ).first()

    def _upsert_node(
        self,
        session: Session,
        tenant_id: UUID,
        kb: KbTypeEnum,
        label: str,
        node_type: str | None,
        properties: dict | None,
        source_id: UUID,
    ) -> tuple[UUID, bool]:
        """Return (node_id, created). Existing nodes absorb non-null type and properties."""
        key = normalize_label(label)
        existing = self._find_node(session, tenant_id, kb, key)
        if existing is not None:
            self._merge_node(existing, node_type, properties)
            return existing.id, False

        node = KnowledgeNode(
            tenant_id=tenant_id,
            kb_type=kb,
            label=label,
            label_key=key,
            node_type=node_type,
            properties=properties or {},
            source_id=source_id,
        )
        try:
            with session.begin_nested():
                session.add(node)
                session.flush()
        except IntegrityError:
            # A concurrent run inserted the same label first.
            existing = self._find_node(session, tenant_id, kb, key)
            if existing is None:
                raise
            self._merge_node(existing, node_type, properties)
            return existing.id, False
        return node.id, True

    @staticmethod
    def _merge_node(node: KnowledgeNode, node_type: str | None, properties: dict | None) -> None:
        if node_type:
            node.node_type = node_type
        if properties:
            node.properties = {**(node.properties or {}), **properties}
        node.updated_at = func.now()

    def _resolve_node(self, session: Session, tenant_id: UUID, kb: KbTypeEnum, label: str,
                      node_ids: dict[str, UUID], source_id: UUID, summary: ExtractionSummary) -> UUID:
        key = normalize_label(label)
        if key in node_ids:
            return node_ids[key]
        existing = self._find_node(session, tenant_id, kb, key)
        if existing is not None:
            node_ids[key] = existing.id
            return existing.id
        node_id, created = self._upsert_node(session, tenant_id, kb, label, None, None, source_id)
        summary.nodes_created += int(created)
        node_ids[key] = node_id
        return node_id

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    @staticmethod
    def _insert_edge(session: Session, tenant_id: UUID, kb: KbTypeEnum, src_id: UUID, dst_id: UUID,
                     edge: ExtractedEdge, summary: ExtractionSummary) -> bool:
        """Insert unless the (src, dst, relation) triple exists. Returns True on an actual insert."""
        session.flush()
        stmt = (
            dialect_insert(session, KnowledgeEdge)
            .values(
                tenant_id=tenant_id,
                kb_type=kb,
                src_node_id=src_id,
                dst_node_id=dst_id,
                relation=edge.relation,
                properties=edge.properties or {},
            )
            .on_conflict_do_nothing(
                index_elements=["tenant_id", "kb_type", "src_node_id", "dst_node_id", "relation"]
            )
            .returning(KnowledgeEdge.id)
        )
        try:
            with session.begin_nested():
                inserted = session.execute(stmt).first()
        except SQLAlchemyError as e:
            summary.edges_failed += 1
            logger.warning(
                f"Edge '{edge.src_label}' -[{edge.relation}]-> '{edge.dst_label}' rejected: {e}",
                extra={"extra_data": {"relation": edge.relation}},
            )
            return False
        return inserted is not None
