"""
CallSim LLM Module
==================

Completion and embedding clients over the OpenAI SDK (OpenAI or Azure OpenAI).
"""

from .client import (
    CompletionClient,
    LLMConfig,
    build_openai_client,
    extract_json,
    translate_openai_error,
)
from .embeddings import Embedder, EmbedderConfig, fit_dimension

__all__ = [
    "CompletionClient",
    "LLMConfig",
    "build_openai_client",
    "extract_json",
    "translate_openai_error",
    "Embedder",
    "EmbedderConfig",
    "fit_dimension",
]
