"""
CallSim - Vector Retriever
==========================

Nearest-neighbour lookup of knowledge chunks for a (tenant, kb type) scope.

On PostgreSQL the ranking is done by pgvector (``<=>`` cosine distance). On
any other dialect the scoped vectors are loaded and ranked in memory with
numpy, which keeps the retriever usable against SQLite in tests.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import numpy as np
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from ..core.db import coerce_kb_type, get_session_factory, is_postgres
from ..core.models import KnowledgeChunk, KnowledgeSource
from ..llm.embeddings import Embedder

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    top_k: int = 8

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetrieverConfig":
        return cls(top_k=max(1, settings.RAG_TOP_K))


@dataclass
class RetrievedChunk:
    chunk_id: UUID
    content: str
    source_title: str
    distance: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": str(self.chunk_id),
            "content": self.content,
            "source_title": self.source_title,
            "distance": self.distance,
        }


def cosine_distances(query: list[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine distance (1 - similarity) of each matrix row to the query; zero vectors score 1.0."""
    q = np.asarray(query, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    similarity = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
    return 1.0 - similarity


class VectorRetriever:
    """Rank stored chunk vectors against a query text."""

    def __init__(
        self,
        embedder: Embedder,
        session_factory: sessionmaker | None = None,
        config: RetrieverConfig | None = None,
    ):
        self.embedder = embedder
        self.session_factory = session_factory or get_session_factory()
        self.config = config or RetrieverConfig()

    def retrieve(self, tenant_id: UUID, kb_type, query_text: str, top_k: int | None = None) -> list[RetrievedChunk]:
        """
        Return the top_k chunks nearest to query_text, nearest first.

        An empty scope yields an empty list. Embedding failures propagate.
        """
        kb = coerce_kb_type(kb_type)
        limit = max(1, int(top_k if top_k is not None else self.config.top_k))

        vectors = self.embedder.embed([query_text])
        if not vectors:
            logger.warning("Embedding service returned no vector for the query")
            return []
        query_vector = vectors[0]

        with self.session_factory() as session:
            if is_postgres(session):
                results = self._rank_in_database(session, tenant_id, kb, query_vector, limit)
            else:
                results = self._rank_in_memory(session, tenant_id, kb, query_vector, limit)

        logger.debug(
            f"Retrieved {len(results)} chunks",
            extra={"extra_data": {"tenant_id": str(tenant_id), "kb_type": kb.value, "top_k": limit}},
        )
        return results

    @staticmethod
    def _scope(tenant_id: UUID, kb) -> list:
        return [
            KnowledgeChunk.tenant_id == tenant_id,
            KnowledgeChunk.kb_type == kb,
            KnowledgeChunk.embedding.is_not(None),
        ]

    def _rank_in_database(self, session: Session, tenant_id: UUID, kb, query_vector, limit) -> list[RetrievedChunk]:
        distance = KnowledgeChunk.embedding.cosine_distance(query_vector).label("distance")
        stmt = (
            select(KnowledgeChunk.id, KnowledgeChunk.content, KnowledgeSource.title, distance)
            .join(KnowledgeSource, KnowledgeSource.id == KnowledgeChunk.source_id)
            .where(*self._scope(tenant_id, kb))
            .order_by(distance.asc())
            .limit(limit)
        )
        return [
            RetrievedChunk(chunk_id=row.id, content=row.content, source_title=row.title, distance=float(row.distance))
            for row in session.execute(stmt)
        ]

    def _rank_in_memory(self, session: Session, tenant_id: UUID, kb, query_vector, limit) -> list[RetrievedChunk]:
        stmt = (
            select(KnowledgeChunk.id, KnowledgeChunk.content, KnowledgeSource.title, KnowledgeChunk.embedding)
            .join(KnowledgeSource, KnowledgeSource.id == KnowledgeChunk.source_id)
            .where(*self._scope(tenant_id, kb))
        )
        rows = session.execute(stmt).all()
        if not rows:
            return []

        matrix = np.array([np.asarray(row.embedding, dtype=float) for row in rows])
        distances = cosine_distances(query_vector, matrix)
        order = np.argsort(distances, kind="stable")[:limit]
        return [
            RetrievedChunk(
                chunk_id=rows[i].id,
                content=rows[i].content,
                source_title=rows[i].title,
                distance=float(distances[i]),
            )
            for i in order
        ]
