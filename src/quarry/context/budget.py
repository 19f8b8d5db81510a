"""Token budget allocator: approximate token counts and history trimming.

Messages are OpenAI-style mappings with ``role`` and ``content`` keys. These
functions never raise on bad input: a message without usable content counts
as empty, and anything that is not a mapping is treated as an empty
non-system message.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from quarry.ingest.base import TOKENS_PER_WORD

# Per-message overhead for role markers and separators.
_MESSAGE_OVERHEAD = 2


@dataclass
class TokenBudget:
    total: int
    system: int
    persona: int
    memory: int
    history: int
    response: int


def estimate_tokens(text: str | None) -> int:
    """``ceil(words × 1.3) + 2``, or 0 for empty text.

    Swap this function for a real tokenizer; callers only rely on the
    signature.
    """
    if not text or not isinstance(text, str):
        return 0
    return math.ceil(len(text.split()) * TOKENS_PER_WORD) + _MESSAGE_OVERHEAD


def message_content(message: Any) -> str:
    if isinstance(message, Mapping):
        content = message.get("content")
        if isinstance(content, str):
            return content
    return ""


def message_role(message: Any) -> str:
    if isinstance(message, Mapping):
        role = message.get("role")
        if isinstance(role, str):
            return role
    return ""


def allocate_budget(
    context_window: int,
    max_response_tokens: int,
    system_tokens: int = 200,
    persona_tokens: int = 300,
    memory_tokens: int = 0,
) -> TokenBudget:
    """Split *context_window* into per-section allowances.

    History gets whatever the fixed sections leave, never less than zero.
    """
    history = max(
        0, context_window - max_response_tokens - system_tokens - persona_tokens - memory_tokens
    )
    return TokenBudget(
        total=context_window,
        system=system_tokens,
        persona=persona_tokens,
        memory=memory_tokens,
        history=history,
        response=max_response_tokens,
    )


def trim_history(messages: Sequence[Any], max_tokens: int) -> list[Any]:
    """Drop the oldest non-system messages until the rest fit *max_tokens*.

    All system messages are kept and paid for first. The most recent
    non-system messages are then kept while they fit, scanning backward and
    stopping at the first one that does not; nothing older survives and no
    message is cut. The result lists the system messages, then the kept
    messages, each group in its original order.
    """
    if not messages:
        return []
    counts = [estimate_tokens(message_content(m)) for m in messages]
    if max_tokens > 0 and sum(counts) <= max_tokens:
        return list(messages)

    system: list[Any] = []
    conversation: list[tuple[Any, int]] = []
    used = 0
    for message, tokens in zip(messages, counts):
        if message_role(message) == "system":
            system.append(message)
            used += tokens
        else:
            conversation.append((message, tokens))

    available = max_tokens - used
    kept: list[Any] = []
    for message, tokens in reversed(conversation):
        if tokens > available:
            break
        available -= tokens
        kept.append(message)
    kept.reverse()
    return system + kept
