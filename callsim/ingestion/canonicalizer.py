"""
CallSim - Document Canonicalizer
================================

Validates uploaded documents and extracts normalized plain text from
PDF, DOCX and plain-text payloads.

Usage:
    canonicalizer = DocumentCanonicalizer(CanonicalizerConfig.from_settings(settings))
    canonicalizer.validate(content, "manual.pdf", "application/pdf")
    text = canonicalizer.extract_text(content, "manual.pdf", "application/pdf")
"""

import io
import logging
import re
from dataclasses import dataclass, field

import numpy as np
from docx import Document as DocxDocument
from pypdf import PdfReader

from ..config import DEFAULT_ALLOWED_MIME, Settings
from ..resilience.error_handler import (
    EmptyFileError,
    FileTooLargeError,
    MagicMismatchError,
    MimeNotAllowedError,
    ParseFailureError,
    UnsupportedMimeError,
    handle_errors,
)

logger = logging.getLogger(__name__)

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_TEXT = "text/plain"

PRINTABLE_RATIO_WARN = 0.6

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HORIZONTAL_SPACE = re.compile(r"[ \t]+")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class CanonicalizerConfig:
    """Upload limits for document validation."""

    max_upload_mb: int = 10
    allowed_mime: frozenset[str] = field(
        default_factory=lambda: frozenset(m.strip() for m in DEFAULT_ALLOWED_MIME.split(","))
    )

    @property
    def byte_limit(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "CanonicalizerConfig":
        return cls(max_upload_mb=settings.UPLOAD_MAX_MB, allowed_mime=settings.allowed_mime_types)


# =============================================================================
# TEXT NORMALIZATION
# =============================================================================


def normalize_text(text: str) -> str:
    """
    Remove control characters, collapse horizontal whitespace and drop
    blank lines. Line breaks between non-empty lines are kept.
    """
    if not text:
        return ""
    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_SPACE.sub(" ", text)
    lines = (line.strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def printable_ratio(content: bytes) -> float:
    """Share of bytes in the whole buffer that are printable ASCII, tab, LF or CR."""
    if not content:
        return 1.0
    data = np.frombuffer(content, dtype=np.uint8)
    printable = ((data >= 32) & (data <= 126)) | np.isin(data, (9, 10, 13))
    return float(np.count_nonzero(printable)) / data.size


def _normalize_mime(mime: str | None) -> str:
    return str(mime or "").strip().lower()


# =============================================================================
# CANONICALIZER
# =============================================================================


class DocumentCanonicalizer:
    """Validate and extract text from uploaded knowledge documents."""

    def __init__(self, config: CanonicalizerConfig | None = None):
        self.config = config or CanonicalizerConfig()

    def validate(self, content: bytes, filename: str | None, declared_mime: str | None) -> None:
        """
        Reject empty, oversized, disallowed or mislabeled uploads.

        Raises:
            EmptyFileError, FileTooLargeError, MimeNotAllowedError, MagicMismatchError
        """
        if not content:
            raise EmptyFileError("Uploaded file is empty")

        if len(content) > self.config.byte_limit:
            raise FileTooLargeError(
                f"File exceeds the {self.config.max_upload_mb} MB limit",
                details={"size_bytes": len(content), "limit_bytes": self.config.byte_limit},
            )

        mime = _normalize_mime(declared_mime)
        if mime not in self.config.allowed_mime:
            raise MimeNotAllowedError(
                f"File type not allowed: {mime}",
                details={"allowed": sorted(self.config.allowed_mime)},
            )

        name = str(filename or "").lower()
        if mime == MIME_PDF and not content.startswith(b"%PDF"):
            raise MagicMismatchError("Declared PDF does not carry a PDF signature")

        if mime == MIME_DOCX and not (content.startswith(b"PK") and name.endswith(".docx")):
            raise MagicMismatchError("Declared DOCX is not a .docx zip archive")

        if mime == MIME_TEXT:
            ratio = printable_ratio(content)
            if ratio < PRINTABLE_RATIO_WARN:
                logger.warning(
                    f"Text upload '{filename}' has low printable ratio ({ratio:.2f})",
                    extra={"extra_data": {"filename": filename, "printable_ratio": ratio}},
                )

    def extract_text(self, content: bytes, filename: str | None, mime: str | None) -> str:
        """
        Extract normalized plain text.

        Raises:
            UnsupportedMimeError: mime is not PDF, DOCX or plain text
            ParseFailureError: the document could not be read
        """
        mime = _normalize_mime(mime)
        if mime == MIME_PDF:
            return normalize_text(self._extract_pdf(content))
        if mime == MIME_DOCX:
            return normalize_text(self._extract_docx(content))
        if mime == MIME_TEXT:
            return normalize_text(content.decode("utf-8", errors="replace"))
        raise UnsupportedMimeError(f"Unsupported mime type for extraction: {mime}", details={"filename": filename})

    @staticmethod
    @handle_errors(ParseFailureError, logger)
    def _extract_pdf(content: bytes) -> str:
        reader = PdfReader(io.BytesIO(content))
        return "\n".join(page.extract_text() or "" for page in reader.pages)

    @staticmethod
    @handle_errors(ParseFailureError, logger)
    def _extract_docx(content: bytes) -> str:
        document = DocxDocument(io.BytesIO(content))
        parts = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.append("\t".join(cell.text for cell in row.cells))
        return "\n".join(parts)


_default = DocumentCanonicalizer()


def validate(content: bytes, filename: str | None, declared_mime: str | None) -> None:
    _default.validate(content, filename, declared_mime)


def extract_text(content: bytes, filename: str | None, mime: str | None) -> str:
    return _default.extract_text(content, filename, mime)
