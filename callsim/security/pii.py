"""PII Anonymizer - masks emails, phone numbers and CPF numbers."""

import re
from dataclasses import dataclass, field
from typing import Any

RAW_MODE = "raw"
VISIBLE_SUFFIX = 4


@dataclass
class PIIPattern:
    name: str
    pattern: str
    compiled: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        self.compiled = re.compile(self.pattern)


def mask_tail(value: str, visible: int = VISIBLE_SUFFIX) -> str:
    """Replace every character but the last `visible` ones with '*'."""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]


class PIIAnonymizer:
    """Apply ordered PII substitutions to free text."""

    # Order matters: emails first so their digits are not picked up as phones.
    PII_PATTERNS = [
        PIIPattern("email", r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
        PIIPattern("phone", r"(?:\(?\d{2}\)?\s?)?\d{4,5}[-\s]?\d{4}"),
        PIIPattern("cpf", r"\d{3}\.\d{3}\.\d{3}-\d{2}|\d{11}"),
    ]

    def __init__(self, pii_patterns: list[PIIPattern] | None = None, visible: int = VISIBLE_SUFFIX):
        self.pii_patterns = pii_patterns or self.PII_PATTERNS
        self.visible = visible

    def anonymize(self, text: str, mode: str = "default") -> str:
        if mode == RAW_MODE or not text:
            return text
        result = text
        for pattern in self.pii_patterns:
            result = pattern.compiled.sub(lambda m: mask_tail(m.group(0), self.visible), result)
        return result

    def anonymize_recursive(self, value: Any, mode: str = "default") -> Any:
        """Anonymize strings nested inside dicts and lists."""
        if mode == RAW_MODE or value is None:
            return value
        if isinstance(value, str):
            return self.anonymize(value, mode)
        if isinstance(value, list):
            return [self.anonymize_recursive(item, mode) for item in value]
        if isinstance(value, dict):
            return {key: self.anonymize_recursive(item, mode) for key, item in value.items()}
        return value


_default = PIIAnonymizer()


def anonymize(text: str, mode: str = "default") -> str:
    return _default.anonymize(text, mode)


def anonymize_recursive(value: Any, mode: str = "default") -> Any:
    return _default.anonymize_recursive(value, mode)
