"""
CallSim - Language-Model Completion Client
==========================================

Thin wrapper over the OpenAI SDK chat-completions API. Provider failures are
translated into the pipeline's error taxonomy so callers can distinguish
rate limiting, exhausted quota, a misconfigured deployment and generic
failures, each with its HTTP status.
"""

import json
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import openai

from ..config import Settings
from ..core.schemas import ChatMessage
from ..resilience.error_handler import (
    LLMServiceError,
    ModelNotFoundError,
    ModelOutputError,
    QuotaExceededError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class LLMConfig:
    """Configuration for completion requests."""

    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 4096
    timeout_seconds: float = 60.0
    max_retries: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMConfig":
        return cls(
            model=settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
            max_retries=settings.LLM_MAX_RETRIES,
        )


def build_openai_client(settings: Settings) -> openai.OpenAI:
    """Create an OpenAI or Azure OpenAI SDK client from settings."""
    if settings.use_azure:
        return openai.AzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=settings.LLM_MAX_RETRIES,
        )
    return openai.OpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
    )


def _provider_code(exc: openai.APIStatusError) -> str | None:
    code = getattr(exc, "code", None)
    if code:
        return str(code)
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("code"):
            return str(error["code"])
        if body.get("code"):
            return str(body["code"])
    return None


def status_and_details(exc: Exception) -> tuple[int | None, Any]:
    """HTTP-like status and response details for an SDK exception."""
    if isinstance(exc, openai.APITimeoutError):
        return 504, "request timed out"
    if isinstance(exc, openai.APIConnectionError):
        return 503, str(exc)
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code, exc.body if exc.body is not None else str(exc)
    return None, str(exc)


def translate_openai_error(exc: Exception) -> LLMServiceError:
    status, details = status_and_details(exc)
    if isinstance(exc, openai.APIStatusError):
        code = _provider_code(exc)
        if status == 402 or code == "insufficient_quota":
            return QuotaExceededError("Language model quota exhausted", status=status, details=details)
        if status == 429:
            return RateLimitedError("Language model rate limit reached", status=status, details=details)
        if status == 404:
            return ModelNotFoundError("Language model deployment not found", status=status, details=details)
    return LLMServiceError(f"Language model request failed: {exc}", status=status, details=details)


def extract_json(text: str) -> Any:
    """
    Decode the first-to-last brace span of a model reply as JSON.

    Raises:
        ModelOutputError: no JSON object found or it does not decode
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ModelOutputError("Model reply contains no JSON object", details={"reply": (text or "")[:500]})
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ModelOutputError(f"Model reply is not valid JSON: {e}", details={"reply": match.group(0)[:500]}) from e


class CompletionClient:
    """Chat-completion collaborator for graph extraction and motive synthesis."""

    def __init__(self, client: openai.OpenAI, config: LLMConfig | None = None):
        self.client = client
        self.config = config or LLMConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionClient":
        return cls(build_openai_client(settings), LLMConfig.from_settings(settings))

    def complete(self, messages: Sequence[ChatMessage | dict[str, str]]) -> str:
        """
        Send role-tagged turns and return the completion text.

        Raises:
            LLMServiceError (or RateLimitedError, QuotaExceededError, ModelNotFoundError)
        """
        payload = [
            {"role": m.role.value, "content": m.content} if isinstance(m, ChatMessage) else dict(m)
            for m in messages
        ]
        start = time.monotonic()
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=payload,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                timeout=self.config.timeout_seconds,
            )
        except openai.OpenAIError as e:
            error = translate_openai_error(e)
            logger.warning(
                f"Completion failed ({error.code}, status={error.status})",
                extra={"extra_data": {"model": self.config.model, "status": error.status}},
            )
            raise error from e

        latency_ms = int((time.monotonic() - start) * 1000)
        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        logger.debug(
            f"Completion received ({len(text)} chars, {latency_ms}ms)",
            extra={"extra_data": {"model": self.config.model, "latency_ms": latency_ms}},
        )
        return text

    def complete_json(self, messages: Sequence[ChatMessage | dict[str, str]]) -> Any:
        return extract_json(self.complete(messages))
