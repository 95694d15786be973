"""Transcript lab: batch motive analysis and run reports."""

from .motive_analyzer import (
    ATT_PROCESS_ERR,
    MOTIVE_LLM_ERR,
    MotiveAnalysisConfig,
    MotiveBatchAnalyzer,
    TranscriptSample,
    build_motive_messages,
)
from .reports import get_run_progress, list_errors, list_results
from .runner import BackgroundRunner, get_runner

__all__ = [
    "ATT_PROCESS_ERR",
    "MOTIVE_LLM_ERR",
    "MotiveAnalysisConfig",
    "MotiveBatchAnalyzer",
    "TranscriptSample",
    "build_motive_messages",
    "get_run_progress",
    "list_errors",
    "list_results",
    "BackgroundRunner",
    "get_runner",
]
