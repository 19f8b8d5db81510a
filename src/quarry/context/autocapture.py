"""Auto-capture: store memorable sentences from a conversation turn.

Each trigger is a case-insensitive regex. For every match the enclosing
sentence (bounded by ``.``, ``!``, ``?`` or a newline) becomes a candidate
memory in the trigger's category. At most ``max_per_turn`` candidates are
taken per turn, in trigger order. A candidate is skipped when a stored
memory in the same scope is a near-duplicate (cosine >= the dedup
threshold), or, if the provider is down, when an identical entry exists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

from quarry.context.file_memory import FileMemory
from quarry.context.memory_search import MemorySearch
from quarry.db.models import MemoryEntry
from quarry.db.repository import MemoryRepository
from quarry.db.vectors import VectorStore
from quarry.errors import ProviderError
from quarry.logging import get_logger
from quarry.rag.embeddings import EmbeddingProvider
from quarry.rag.retriever import embed_query

log = get_logger(__name__)

_MIN_CAPTURE_CHARS = 10
_SENTENCE_END = ".!?\n"
_CATEGORY_IMPORTANCE = {"entity": 0.8, "preference": 0.7, "decision": 0.9, "fact": 0.6}
_DEFAULT_IMPORTANCE = 0.5


@dataclass
class CaptureTrigger:
    id: str
    name: str
    pattern: str
    category: str
    enabled: bool = True


DEFAULT_TRIGGERS: tuple[CaptureTrigger, ...] = (
    CaptureTrigger(
        "remember", "Explicit Remember",
        r"remember this|remember that|don't forget|do not forget", "fact",
    ),
    CaptureTrigger(
        "preference", "User Preferences",
        r"i prefer|i like|i hate|i love|i want|i need", "preference",
    ),
    CaptureTrigger(
        "decision", "Decisions",
        r"we decided|let's use|we'll go with|we should use|let us use", "decision",
    ),
    CaptureTrigger(
        "identity", "Identity Statements",
        r"my .+ is|is my|i am a|i work as|i live in", "entity",
    ),
    CaptureTrigger(
        "important", "Importance Markers",
        r"always|never|important to me|crucial|essential", "fact",
    ),
    CaptureTrigger("email", "Email Addresses", r"[\w.-]+@[\w.-]+\.\w+", "entity"),
    CaptureTrigger("phone", "Phone Numbers", r"\+\d{10,}", "entity"),
)


@dataclass
class AutoCaptureConfig:
    enabled: bool = True
    max_per_turn: int = 3
    dedup_threshold: float = 0.95
    triggers: list[CaptureTrigger] = field(default_factory=lambda: list(DEFAULT_TRIGGERS))


@dataclass
class CapturedMemory:
    content: str
    category: str
    trigger_id: str


def _enclosing_sentence(text: str, start: int, end: int) -> str:
    while start > 0 and text[start - 1] not in _SENTENCE_END:
        start -= 1
    while end < len(text) and text[end] not in _SENTENCE_END:
        end += 1
    if end < len(text) and text[end] != "\n":
        end += 1  # keep the terminator
    return text[start:end].strip()


def scan_for_captures(text: str, config: AutoCaptureConfig | None = None) -> list[CapturedMemory]:
    """Sentences in *text* that match an enabled trigger, at most ``max_per_turn``.

    A trigger whose pattern does not compile is logged and skipped.
    """
    config = config or AutoCaptureConfig()
    if not config.enabled or not text:
        return []

    captures: list[CapturedMemory] = []
    for trigger in config.triggers:
        if not trigger.enabled:
            continue
        if len(captures) >= config.max_per_turn:
            break
        try:
            regex = re.compile(trigger.pattern, re.IGNORECASE)
        except re.error as exc:
            log.warning("capture_pattern_invalid", trigger=trigger.id, error=str(exc))
            continue
        for match in regex.finditer(text):
            if len(captures) >= config.max_per_turn:
                break
            sentence = _enclosing_sentence(text, match.start(), match.end())
            if len(sentence) <= _MIN_CAPTURE_CHARS:
                continue
            if any(c.content == sentence for c in captures):
                continue
            captures.append(CapturedMemory(sentence, trigger.category, trigger.id))
    return captures


def importance_for(category: str) -> float:
    return _CATEGORY_IMPORTANCE.get(category, _DEFAULT_IMPORTANCE)


class AutoCapture:
    """Scan conversation turns and store what they reveal as memory entries.

    Args:
        memory_repo: Where captured entries are stored.
        memory_search: Embeds each stored entry so it can be recalled.
        provider: Embedding provider used for the duplicate check.
        store: Vector store searched for near-duplicates.
        file_memory: Optional markdown mirror of every stored entry.
        config: Triggers and limits; defaults when omitted.
    """

    def __init__(
        self,
        memory_repo: MemoryRepository,
        memory_search: MemorySearch,
        provider: EmbeddingProvider,
        store: VectorStore,
        file_memory: FileMemory | None = None,
        config: AutoCaptureConfig | None = None,
    ) -> None:
        self._memory = memory_repo
        self._search = memory_search
        self._provider = provider
        self._store = store
        self._file_memory = file_memory
        self._config = config or AutoCaptureConfig()

    async def process_message(
        self,
        text: str,
        scope: str = "global",
        source_id: str | None = None,
    ) -> list[MemoryEntry]:
        """Capture memorable sentences from one user or assistant message.

        Returns:
            The entries stored, in capture order.
        """
        stored: list[MemoryEntry] = []
        for capture in scan_for_captures(text, self._config):
            if await self._is_duplicate(capture.content, scope, source_id):
                log.info("capture_skipped_duplicate", content=capture.content[:50])
                continue
            entry = self._memory.create(
                MemoryEntry(
                    id="",
                    type="memory",
                    category=capture.category,
                    scope=scope,
                    source_id=source_id,
                    content=capture.content,
                    importance=importance_for(capture.category),
                    auto_captured=True,
                )
            )
            await self._search.index_entry(entry)
            if self._file_memory is not None:
                self._file_memory.write(entry)
            stored.append(entry)
            log.info(
                "memory_captured",
                memory_id=entry.id,
                category=capture.category,
                trigger=capture.trigger_id,
            )
        return stored

    async def _is_duplicate(self, content: str, scope: str, source_id: str | None) -> bool:
        flt: dict[str, Any] = {"type": "memory", "scope": scope}
        if source_id is not None:
            flt["source_id"] = source_id
        try:
            vector = await embed_query(content, self._provider)
        except ProviderError:
            existing = self._memory.search_by_content(content, scope=scope, source_id=source_id)
            return any(e.content == content for e in existing)
        hits = self._store.search(vector, 1, flt)
        return bool(hits) and hits[0].score >= self._config.dedup_threshold

    def get_config(self) -> AutoCaptureConfig:
        return replace(self._config, triggers=list(self._config.triggers))

    def update_config(self, **changes: Any) -> AutoCaptureConfig:
        """Override individual settings, e.g. ``update_config(max_per_turn=5)``.

        Raises:
            TypeError: If a name is not an AutoCaptureConfig field.
        """
        self._config = replace(self._config, **changes)
        return self.get_config()
