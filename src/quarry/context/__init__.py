"""Conversation context management: token budgets, compaction, memory recall."""

from quarry.context.autocapture import AutoCapture, AutoCaptureConfig, CaptureTrigger, scan_for_captures
from quarry.context.budget import TokenBudget, allocate_budget, estimate_tokens, trim_history
from quarry.context.compactor import (
    CompactionConfig,
    CompactionEvent,
    CompactionOutcome,
    ContextCompactor,
    SummaryResult,
    heuristic_summarize,
    needs_compaction,
)
from quarry.context.file_memory import FileMemory
from quarry.context.memory_search import (
    MemorySearch,
    MemorySearchConfig,
    MemorySearchResult,
    format_memory_context,
)

__all__ = [
    "AutoCapture",
    "AutoCaptureConfig",
    "CaptureTrigger",
    "scan_for_captures",
    "TokenBudget",
    "allocate_budget",
    "estimate_tokens",
    "trim_history",
    "CompactionConfig",
    "CompactionEvent",
    "CompactionOutcome",
    "ContextCompactor",
    "SummaryResult",
    "heuristic_summarize",
    "needs_compaction",
    "FileMemory",
    "MemorySearch",
    "MemorySearchConfig",
    "MemorySearchResult",
    "format_memory_context",
]
