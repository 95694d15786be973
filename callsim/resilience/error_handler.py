"""Error Handler - Error taxonomy and wrapping helpers.

Input rejections are raised synchronously and never retried. Collaborator
errors carry an HTTP-like status so callers can tell retryable causes apart.
"""

import functools
from typing import Any

RETRYABLE_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})


class CallSimError(Exception):
    """Base exception for the knowledge pipeline."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", details: Any = None, code: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details
        if code:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        data = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


# =============================================================================
# INPUT REJECTION
# =============================================================================


class InputRejectedError(CallSimError):
    """Caller-supplied input was refused."""

    code = "INPUT_REJECTED"
    retryable = False


class EmptyFileError(InputRejectedError):
    code = "EMPTY_FILE"


class FileTooLargeError(InputRejectedError):
    code = "FILE_TOO_LARGE"


class MimeNotAllowedError(InputRejectedError):
    code = "MIME_NOT_ALLOWED"


class MagicMismatchError(InputRejectedError):
    code = "MAGIC_MISMATCH"


class UnsupportedMimeError(InputRejectedError):
    code = "MIME_NOT_SUPPORTED"


class ParseFailureError(InputRejectedError):
    code = "PARSE_FAILURE"


class UnsupportedFormatError(InputRejectedError):
    code = "UNSUPPORTED_FORMAT"


class InvalidKbTypeError(InputRejectedError):
    code = "INVALID_KB_TYPE"


class SourceNotFoundError(InputRejectedError):
    code = "SOURCE_NOT_FOUND"


class EmptyContentError(InputRejectedError):
    code = "EMPTY_CONTENT"


# =============================================================================
# COLLABORATOR FAILURES
# =============================================================================


class CollaboratorError(CallSimError):
    """An external service (language model, embeddings) did not succeed."""

    code = "COLLABORATOR_ERROR"

    def __init__(self, message: str = "", status: int | None = None, details: Any = None):
        super().__init__(message, details=details)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status in RETRYABLE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        return data


class LLMServiceError(CollaboratorError):
    code = "LLM_ERROR"


class RateLimitedError(LLMServiceError):
    code = "LLM_RATE_LIMITED"


class QuotaExceededError(LLMServiceError):
    code = "LLM_INSUFFICIENT_QUOTA"

    @property
    def retryable(self) -> bool:
        return False


class ModelNotFoundError(LLMServiceError):
    code = "LLM_NOT_FOUND"


class EmbeddingServiceError(CollaboratorError):
    code = "EMBEDDING_ERROR"

    def __init__(self, status: int | None = None, details: Any = None, message: str = ""):
        super().__init__(message or f"Embedding service failed (status={status})", status=status, details=details)


class ModelOutputError(CallSimError):
    """Model returned text that is not the strict JSON shape requested."""

    code = "MODEL_OUTPUT_INVALID"


def handle_errors(error_class=CallSimError, logger=None, passthrough: tuple = (CallSimError,)):
    """Decorator wrapping unexpected exceptions into error_class."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except passthrough:
                raise
            except Exception as e:
                if logger:
                    logger.error(f"Error in {func.__name__}: {e}")
                raise error_class(str(e)) from e

        return wrapper

    return decorator
