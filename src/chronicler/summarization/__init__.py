"""Tiered summarization of transcript history."""

from .assembler import HistoryAssembler, WindowEntry, clean_transient_markup
from .backfill import BackfillBatcher, BackfillReport, partition_runs
from .reasoning import strip_reasoning
from .summarizer import LLMProtocol, Summarizer, SummaryTemplate, extract_summary
from .summary_cache import SummaryRecord, SummaryStore, SummaryType, Turn
from .summary_worker import DigestScheduler
from .tiers import Tier, classify

__all__ = [
    "SummaryStore",
    "SummaryRecord",
    "SummaryType",
    "Turn",
    "Summarizer",
    "SummaryTemplate",
    "LLMProtocol",
    "extract_summary",
    "strip_reasoning",
    "BackfillBatcher",
    "BackfillReport",
    "partition_runs",
    "DigestScheduler",
    "HistoryAssembler",
    "WindowEntry",
    "clean_transient_markup",
    "Tier",
    "classify",
]
