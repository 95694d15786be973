"""
CallSim - Embedding Service
===========================

Turns text into fixed-dimension vectors through the OpenAI SDK embeddings
API. Every returned vector is truncated or zero-padded to the configured
dimension so it always fits the ``kb_chunks.embedding`` column.
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import openai

from ..config import Settings
from ..core.models import EMBEDDING_DIM
from ..resilience.error_handler import EmbeddingServiceError
from .client import build_openai_client, status_and_details

logger = logging.getLogger(__name__)


@dataclass
class EmbedderConfig:
    model: str = "text-embedding-3-small"
    dimension: int = EMBEDDING_DIM
    timeout_seconds: float = 60.0
    strict_cardinality: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbedderConfig":
        return cls(
            model=settings.EMBEDDING_MODEL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
            strict_cardinality=settings.EMBEDDING_STRICT_CARDINALITY,
        )


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def fit_dimension(vector: Sequence[Any] | None, dimension: int) -> list[float]:
    """Truncate or zero-pad a raw vector to exactly `dimension` floats."""
    values = [_as_float(v) for v in list(vector or [])[:dimension]]
    fitted = np.zeros(dimension, dtype=float)
    fitted[: len(values)] = values
    return fitted.tolist()


class Embedder:
    """Batch embedding collaborator."""

    def __init__(self, client: openai.OpenAI, config: EmbedderConfig | None = None):
        self.client = client
        self.config = config or EmbedderConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Embedder":
        return cls(build_openai_client(settings), EmbedderConfig.from_settings(settings))

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed all texts with a single request.

        Raises:
            EmbeddingServiceError: the service did not return a success response
        """
        inputs = [t if isinstance(t, str) else str(t) for t in texts]
        if not inputs:
            return []

        try:
            response = self.client.embeddings.create(
                model=self.config.model,
                input=inputs,
                timeout=self.config.timeout_seconds,
            )
        except openai.OpenAIError as e:
            status, details = status_and_details(e)
            logger.error(
                f"Embedding request failed (status={status})",
                extra={"extra_data": {"model": self.config.model, "status": status, "inputs": len(inputs)}},
            )
            raise EmbeddingServiceError(status=status, details=details) from e

        items = list(getattr(response, "data", None) or [])
        vectors = [fit_dimension(getattr(item, "embedding", None), self.config.dimension) for item in items]

        if len(vectors) != len(inputs):
            message = f"Embedding cardinality mismatch: inputs={len(inputs)} outputs={len(vectors)}"
            if self.config.strict_cardinality:
                raise EmbeddingServiceError(status=None, details=message, message=message)
            logger.warning(message)

        return vectors
