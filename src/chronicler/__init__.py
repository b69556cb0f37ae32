"""Tiered history compression for long-running narrative sessions."""

from .engine import GenerationResult, HistoryCompressionEngine, ResultReason
from .errors import ChroniclerError, ConfigError, CoverageConflict, GenerationError
from .settings import SummarySettings, TruncatePolicy

__all__ = [
    "HistoryCompressionEngine",
    "GenerationResult",
    "ResultReason",
    "SummarySettings",
    "TruncatePolicy",
    "ChroniclerError",
    "ConfigError",
    "GenerationError",
    "CoverageConflict",
]
