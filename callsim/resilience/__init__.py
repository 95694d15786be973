"""
CallSim Resilience Module
=========================

Error taxonomy shared by every pipeline component.
"""

from .error_handler import (
    CallSimError,
    CollaboratorError,
    EmbeddingServiceError,
    EmptyContentError,
    EmptyFileError,
    FileTooLargeError,
    InputRejectedError,
    InvalidKbTypeError,
    LLMServiceError,
    MagicMismatchError,
    MimeNotAllowedError,
    ModelNotFoundError,
    ModelOutputError,
    ParseFailureError,
    QuotaExceededError,
    RateLimitedError,
    SourceNotFoundError,
    UnsupportedFormatError,
    UnsupportedMimeError,
    handle_errors,
)

__all__ = [
    "CallSimError",
    "InputRejectedError",
    "EmptyFileError",
    "FileTooLargeError",
    "MimeNotAllowedError",
    "MagicMismatchError",
    "UnsupportedMimeError",
    "ParseFailureError",
    "UnsupportedFormatError",
    "InvalidKbTypeError",
    "SourceNotFoundError",
    "EmptyContentError",
    "CollaboratorError",
    "LLMServiceError",
    "RateLimitedError",
    "QuotaExceededError",
    "ModelNotFoundError",
    "EmbeddingServiceError",
    "ModelOutputError",
    "handle_errors",
]
