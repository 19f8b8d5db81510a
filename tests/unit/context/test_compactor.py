"""Tests for heuristic summarisation and ContextCompactor."""

from __future__ import annotations

import pytest

from quarry.context.compactor import (
    CompactionConfig,
    ContextCompactor,
    estimate_messages_tokens,
    heuristic_summarize,
    needs_compaction,
)
from quarry.context.file_memory import FileMemory
from quarry.db.repository import MemoryRepository


def _conversation(n: int) -> list[dict]:
    return [
        {
            "role": "user" if i % 2 == 0 else "assistant",
            "content": f"Message number {i} talks about topic {i}. More detail follows here.",
        }
        for i in range(n)
    ]


@pytest.fixture
def memory_repo(tmp_db):
    return MemoryRepository(tmp_db)


# ------------------------------------------------------------------
# heuristic_summarize
# ------------------------------------------------------------------


def test_summarize_keeps_head_and_recent_tail():
    messages = _conversation(20)

    result = heuristic_summarize(messages, CompactionConfig(preserve_recent_messages=8))

    assert result.compacted_count == 10
    assert len(result.messages) == 11
    assert result.messages[:2] == messages[:2]
    assert result.messages[3:] == messages[12:]
    summary = result.messages[2]
    assert summary["role"] == "system"
    assert summary["id"] == "summary"
    assert summary["content"] == result.summary
    assert "Conversation summary" in summary["content"]
    assert [m for m in result.messages if m["role"] == "system"] == [summary]


def test_summary_lines_use_first_sentence_and_role():
    result = heuristic_summarize(_conversation(20), CompactionConfig(preserve_recent_messages=8))
    lines = result.summary.splitlines()

    assert lines[0] == "[Conversation summary of 10 messages]"
    assert lines[1] == "- User: Message number 2 talks about topic 2."
    assert lines[2] == "- Assistant: Message number 3 talks about topic 3."
    assert len(lines) == 11


def test_short_fragments_are_left_out():
    messages = _conversation(4)
    messages.insert(2, {"role": "user", "content": "ok."})
    messages.insert(3, {"role": "tool", "content": "Tool output was written to disk."})

    result = heuristic_summarize(messages, CompactionConfig(preserve_recent_messages=2))

    assert result.compacted_count == 2
    assert "ok." not in result.summary
    assert "- System: Tool output was written to disk." in result.summary


@pytest.mark.parametrize("n", [0, 5, 10])
def test_nothing_to_compact_returns_input(n):
    messages = _conversation(n)
    result = heuristic_summarize(messages, CompactionConfig(preserve_recent_messages=8))
    assert result.compacted_count == 0
    assert result.messages == messages
    assert result.summary == ""


def test_one_message_over_the_floor_is_compacted():
    result = heuristic_summarize(_conversation(11), CompactionConfig(preserve_recent_messages=8))
    assert result.compacted_count == 1
    assert len(result.messages) == 11


def test_unterminated_message_falls_back_to_first_100_chars():
    rambling = "x" * 1000
    messages = [*_conversation(2), {"role": "user", "content": rambling}, *_conversation(8)]

    result = heuristic_summarize(messages, CompactionConfig(preserve_recent_messages=8))

    assert result.compacted_count == 1
    lines = result.summary.splitlines()
    assert lines[1] == f"- User: {rambling[:100]}"
    assert all(len(line) <= len("- User: ") + 100 for line in lines[1:])


def test_unterminated_first_line_is_used_alone():
    messages = _conversation(4)
    messages.insert(2, {"role": "assistant", "content": "Notes without a stop\nsecond line."})

    result = heuristic_summarize(messages, CompactionConfig(preserve_recent_messages=2))

    assert "- Assistant: Notes without a stop" in result.summary.splitlines()


@pytest.mark.parametrize("messages", [None, "not a list", 42, {"role": "user"}])
def test_summarize_treats_malformed_input_as_empty(messages):
    result = heuristic_summarize(messages)
    assert (result.summary, result.messages, result.compacted_count) == ("", [], 0)


def test_summarize_skips_non_message_items():
    messages = _conversation(20)
    messages[5] = None
    messages[6] = 7

    result = heuristic_summarize(messages, CompactionConfig(preserve_recent_messages=8))

    assert result.compacted_count == 10
    assert len(result.summary.splitlines()) == 9


def test_summarize_falls_back_on_non_numeric_preserve():
    result = heuristic_summarize(_conversation(20), CompactionConfig(preserve_recent_messages="eight"))
    assert result.compacted_count == 10


# ------------------------------------------------------------------
# needs_compaction
# ------------------------------------------------------------------


def test_needs_compaction_threshold():
    messages = _conversation(20)
    tokens = estimate_messages_tokens(messages)

    assert needs_compaction(messages, tokens)
    assert not needs_compaction(messages, tokens * 10)
    assert not needs_compaction(messages, 1, CompactionConfig(enabled=False))


def test_needs_compaction_is_monotonic_in_history():
    window = estimate_messages_tokens(_conversation(10))
    flags = [needs_compaction(_conversation(n), window) for n in range(0, 20)]
    first = flags.index(True)
    assert all(flags[first:])
    assert not any(flags[:first])


@pytest.mark.parametrize("messages", [None, "text", 3.5])
def test_needs_compaction_rejects_non_sequences(messages):
    assert needs_compaction(messages, 8192) is False
    assert needs_compaction(messages, 0) is False


@pytest.mark.parametrize(
    ("window", "threshold"),
    [("8192", 0.8), (None, 0.8), (float("nan"), 0.8), (50, "high"), (50, None), (True, 0.8)],
)
def test_needs_compaction_ignores_non_numeric_limits(window, threshold):
    config = CompactionConfig(threshold=threshold)
    assert needs_compaction(_conversation(20), window, config) is False


# ------------------------------------------------------------------
# ContextCompactor
# ------------------------------------------------------------------


def test_compactor_persists_chat_summary(memory_repo):
    compactor = ContextCompactor(memory_repo)

    outcome = compactor.compact(_conversation(20), context_window=50, chat_id="chat-1")

    assert outcome.event is not None
    assert outcome.event.messages_before == 20
    assert outcome.event.messages_after == 11
    assert outcome.event.tokens_after < outcome.event.tokens_before
    assert len(outcome.messages) == 11
    (entry,) = memory_repo.list(scope="chat", source_id="chat-1")
    assert entry.type == "summary"
    assert entry.category == "summary"
    assert entry.importance == pytest.approx(0.7)
    assert entry.auto_captured is True
    assert entry.content.startswith("[Conversation summary of 10 messages]")
    assert outcome.entry.id == entry.id


def test_compactor_scopes_to_character(memory_repo):
    ContextCompactor(memory_repo).compact(
        _conversation(20), context_window=50, chat_id="chat-1", character_id="char-9"
    )
    (entry,) = memory_repo.list()
    assert (entry.scope, entry.source_id) == ("character", "char-9")


def test_compactor_mirrors_to_file_memory(memory_repo, tmp_path):
    files = FileMemory(tmp_path / "memory")
    compactor = ContextCompactor(memory_repo, file_memory=files)

    compactor.compact(_conversation(20), context_window=50, chat_id="chat-1")

    assert files.count() == 1
    (hit,) = files.search("topic 5")
    assert hit.id == memory_repo.list()[0].id


def test_compactor_noop_below_threshold(memory_repo):
    messages = _conversation(20)
    outcome = ContextCompactor(memory_repo).compact(messages, context_window=100_000, chat_id="c")
    assert outcome.event is None
    assert outcome.messages == messages
    assert memory_repo.list() == []


def test_compactor_noop_when_history_is_short(memory_repo):
    outcome = ContextCompactor(memory_repo).compact(_conversation(6), context_window=1, chat_id="c")
    assert outcome.event is None
    assert memory_repo.list() == []


def test_config_update_and_copy(memory_repo):
    compactor = ContextCompactor(memory_repo)

    copy = compactor.get_config()
    copy.threshold = 0.1
    assert compactor.get_config().threshold == 0.8

    updated = compactor.update_config(threshold=0.9, preserve_recent_messages=4)
    assert (updated.threshold, updated.preserve_recent_messages) == (0.9, 4)
    assert compactor.get_config().enabled is True

    with pytest.raises(TypeError):
        compactor.update_config(bogus=1)


@pytest.mark.parametrize("messages", [None, "not a list", 12])
def test_compactor_tolerates_malformed_messages(memory_repo, messages):
    outcome = ContextCompactor(memory_repo).compact(messages, context_window=8192, chat_id="c")
    assert outcome.event is None
    assert outcome.messages == []
    assert memory_repo.list() == []


def test_compactor_tolerates_non_numeric_window(memory_repo):
    messages = _conversation(20)
    outcome = ContextCompactor(memory_repo).compact(messages, context_window="50", chat_id="c")
    assert outcome.event is None
    assert outcome.messages == messages
    assert memory_repo.list() == []
