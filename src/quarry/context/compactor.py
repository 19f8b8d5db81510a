"""Context compaction: fold older conversation turns into one summary message.

When a conversation's estimated size passes ``threshold`` of the model's
context window, the interior of the history (everything but the first two
messages and the most recent ``preserve_recent_messages``) is replaced by a
single system message listing one extractive line per compacted turn. The
digest is persisted as a ``summary`` memory entry so it can be recalled
later.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from quarry.context.budget import message_content, message_role
from quarry.context.file_memory import FileMemory
from quarry.db.models import MemoryEntry
from quarry.db.repository import MemoryRepository, utc_now
from quarry.ingest.base import estimate_token_count
from quarry.logging import get_logger

log = get_logger(__name__)

_FIRST_SENTENCE_RE = re.compile(r"^[^.!?\n]+[.!?]?")
_FALLBACK_CHARS = 100
_MIN_FRAGMENT_CHARS = 10
_LEADING_MESSAGES = 2
_EVENT_SUMMARY_CHARS = 200
_SUMMARY_IMPORTANCE = 0.7
_ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


@dataclass
class CompactionConfig:
    enabled: bool = True
    threshold: float = 0.8
    preserve_recent_messages: int = 8


@dataclass
class SummaryResult:
    summary: str
    messages: list[Any]
    compacted_count: int


@dataclass
class CompactionEvent:
    timestamp: str
    messages_before: int
    messages_after: int
    tokens_before: int
    tokens_after: int
    summary: str


@dataclass
class CompactionOutcome:
    messages: list[Any]
    event: CompactionEvent | None
    entry: MemoryEntry | None = None


def _as_messages(messages: Any) -> list[Any]:
    """*messages* as a list; anything but a sequence of messages counts as empty."""
    if isinstance(messages, (str, bytes)) or not isinstance(messages, Sequence):
        return []
    return list(messages)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def estimate_messages_tokens(messages: Sequence[Any]) -> int:
    return sum(estimate_token_count(message_content(m)) for m in _as_messages(messages))


def needs_compaction(
    messages: Sequence[Any],
    context_window: int,
    config: CompactionConfig | None = None,
) -> bool:
    """True when compaction is enabled and *messages* exceed the threshold.

    A non-numeric window or threshold never triggers compaction.
    """
    config = config or CompactionConfig()
    if not config.enabled:
        return False
    window = _as_number(context_window)
    threshold = _as_number(config.threshold)
    if window is None or threshold is None:
        return False
    return estimate_messages_tokens(messages) > window * threshold


def _first_sentence(content: str) -> str:
    text = content.strip()
    match = _FIRST_SENTENCE_RE.match(text)
    if match and match.group(0)[-1:] in ".!?":
        return match.group(0)
    # unterminated: first line, capped
    return text[:_FALLBACK_CHARS].split("\n", 1)[0]


def heuristic_summarize(
    messages: Sequence[Any],
    config: CompactionConfig | None = None,
) -> SummaryResult:
    """Replace the middle of *messages* with one extractive summary message.

    The first two messages and the last ``preserve_recent_messages`` are kept
    verbatim. Each compacted message contributes ``- Role: first sentence``
    unless that fragment is 10 characters or shorter.

    Returns:
        ``SummaryResult`` with the new message list. ``compacted_count`` is 0
        and the messages are unchanged when there is nothing to compact.
    """
    config = config or CompactionConfig()
    preserve_setting = _as_number(config.preserve_recent_messages)
    if preserve_setting is None:
        preserve_setting = CompactionConfig.preserve_recent_messages
    preserve = max(0, int(preserve_setting))
    messages = _as_messages(messages)
    if len(messages) <= preserve + _LEADING_MESSAGES:
        return SummaryResult(summary="", messages=messages, compacted_count=0)

    head = messages[:_LEADING_MESSAGES]
    tail = messages[len(messages) - preserve :]
    middle = messages[_LEADING_MESSAGES : len(messages) - preserve]

    lines = [f"[Conversation summary of {len(middle)} messages]"]
    for message in middle:
        label = _ROLE_LABELS.get(message_role(message), "System")
        fragment = _first_sentence(message_content(message))
        if len(fragment) > _MIN_FRAGMENT_CHARS:
            lines.append(f"- {label}: {fragment}")
    summary = "\n".join(lines)

    summary_message = {
        "id": "summary",
        "role": "system",
        "content": summary,
        "created_at": utc_now(),
    }
    return SummaryResult(
        summary=summary,
        messages=[*head, summary_message, *tail],
        compacted_count=len(middle),
    )


class ContextCompactor:
    """Applies compaction to a chat and records the digest as memory.

    Args:
        memory_repo: Where summary entries are stored.
        file_memory: Optional markdown mirror of every stored summary.
        config: Threshold and retention settings; defaults when omitted.
    """

    def __init__(
        self,
        memory_repo: MemoryRepository,
        file_memory: FileMemory | None = None,
        config: CompactionConfig | None = None,
    ) -> None:
        self._memory = memory_repo
        self._file_memory = file_memory
        self._config = config or CompactionConfig()

    def compact(
        self,
        messages: Sequence[Any],
        context_window: int,
        chat_id: str,
        character_id: str | None = None,
    ) -> CompactionOutcome:
        """Compact *messages* if they pass the threshold.

        Returns:
            The (possibly) shortened message list, with an event describing
            the change and the stored summary entry, or ``event=None`` when
            nothing was compacted. Malformed input is treated as an empty
            history.
        """
        messages = _as_messages(messages)
        if not needs_compaction(messages, context_window, self._config):
            return CompactionOutcome(messages=messages, event=None)

        tokens_before = estimate_messages_tokens(messages)
        log.info(
            "compaction_triggered",
            chat_id=chat_id,
            messages=len(messages),
            tokens=tokens_before,
            threshold=context_window * self._config.threshold,
        )

        result = heuristic_summarize(messages, self._config)
        if result.compacted_count == 0:
            return CompactionOutcome(messages=messages, event=None)

        entry = self._memory.create(
            MemoryEntry(
                id="",
                type="summary",
                category="summary",
                scope="character" if character_id else "chat",
                source_id=character_id or chat_id,
                content=result.summary,
                importance=_SUMMARY_IMPORTANCE,
                auto_captured=True,
            )
        )
        if self._file_memory is not None:
            self._file_memory.write(entry)

        tokens_after = estimate_messages_tokens(result.messages)
        event = CompactionEvent(
            timestamp=utc_now(),
            messages_before=len(messages),
            messages_after=len(result.messages),
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            summary=result.summary[:_EVENT_SUMMARY_CHARS],
        )
        log.info(
            "compaction_completed",
            chat_id=chat_id,
            memory_id=entry.id,
            messages_before=event.messages_before,
            messages_after=event.messages_after,
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            compacted=result.compacted_count,
        )
        return CompactionOutcome(messages=result.messages, event=event, entry=entry)

    def get_config(self) -> CompactionConfig:
        return replace(self._config)

    def update_config(self, **changes: Any) -> CompactionConfig:
        """Override individual settings, e.g. ``update_config(threshold=0.9)``.

        Raises:
            TypeError: If a name is not a CompactionConfig field.
        """
        self._config = replace(self._config, **changes)
        return replace(self._config)
