"""
CallSim Security Module
=======================

PII anonymization applied to knowledge text, model prompts and graph exports.
"""

from .pii import (
    PIIAnonymizer,
    PIIPattern,
    anonymize,
    anonymize_recursive,
    mask_tail,
)

__all__ = [
    "PIIAnonymizer",
    "PIIPattern",
    "anonymize",
    "anonymize_recursive",
    "mask_tail",
]
