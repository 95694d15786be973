"""Vector similarity retrieval over knowledge-base chunks."""

from .vector_retriever import RetrievedChunk, RetrieverConfig, VectorRetriever, cosine_distances

__all__ = ["RetrievedChunk", "RetrieverConfig", "VectorRetriever", "cosine_distances"]
