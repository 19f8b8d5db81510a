"""Tests for TokenWindowChunker and the shared token estimator."""

from __future__ import annotations

import pytest

from quarry.ingest import chunk_text
from quarry.ingest.base import estimate_token_count
from quarry.ingest.plaintext import TokenWindowChunker


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


# ------------------------------------------------------------------
# estimate_token_count
# ------------------------------------------------------------------

def test_estimate_token_count_empty():
    assert estimate_token_count("") == 0
    assert estimate_token_count("   \n ") == 0


def test_estimate_token_count_rounds_up():
    assert estimate_token_count("one") == 2
    assert estimate_token_count("one two three") == 4


# ------------------------------------------------------------------
# Window sizing
# ------------------------------------------------------------------

def test_default_window_sizes():
    chunker = TokenWindowChunker()
    assert chunker.window_words == 615
    assert chunker.overlap_words == 92


def test_empty_input_yields_nothing():
    assert TokenWindowChunker().chunk("") == []
    assert TokenWindowChunker().chunk(" \n\t ") == []


def test_short_text_is_one_chunk():
    chunks = TokenWindowChunker().chunk("hello   wide\nworld")
    assert len(chunks) == 1
    assert chunks[0].content == "hello wide world"
    assert chunks[0].metadata == {"strategy": "token_window", "word_start": 0, "word_end": 3}


def test_windows_overlap():
    # 10 words per window, 2 shared
    chunks = TokenWindowChunker(max_tokens=14, overlap=3).chunk(_words(25))
    assert [(c.metadata["word_start"], c.metadata["word_end"]) for c in chunks] == [
        (0, 10),
        (8, 18),
        (16, 25),
    ]
    assert [c.index for c in chunks] == [0, 1, 2]
    assert chunks[0].token_count == estimate_token_count(chunks[0].content)


def test_small_remainder_is_absorbed():
    chunks = TokenWindowChunker(max_tokens=14, overlap=3).chunk(_words(19))
    assert [(c.metadata["word_start"], c.metadata["word_end"]) for c in chunks] == [(0, 10), (8, 19)]


@pytest.mark.parametrize("n", [1, 9, 10, 11, 37, 100])
def test_overlap_stripped_reconstructs_words(n):
    text = _words(n)
    chunks = TokenWindowChunker(max_tokens=14, overlap=3).chunk(text)
    rebuilt: list[str] = []
    covered = 0
    for c in chunks:
        words = c.content.split()
        rebuilt.extend(words[covered - c.metadata["word_start"]:])
        covered = c.metadata["word_end"]
    assert rebuilt == text.split()


def test_no_overlap():
    chunks = TokenWindowChunker(max_tokens=14, overlap=0).chunk(_words(20))
    assert [c.content.split()[0] for c in chunks] == ["w0", "w10"]


@pytest.mark.parametrize("max_tokens,overlap", [(1, 0), (100, -1), (100, 100), (100, 200)])
def test_invalid_parameters(max_tokens, overlap):
    with pytest.raises(ValueError):
        TokenWindowChunker(max_tokens=max_tokens, overlap=overlap)


# ------------------------------------------------------------------
# chunk_text dispatch
# ------------------------------------------------------------------

def test_chunk_text_auto_detects_markdown():
    chunks = chunk_text("# Title\n\nbody text", strategy="auto")
    assert chunks[0].metadata["strategy"] == "markdown"


def test_chunk_text_auto_plain():
    chunks = chunk_text("just some words", strategy=None)
    assert chunks[0].metadata["strategy"] == "token_window"


def test_chunk_text_unknown_strategy():
    with pytest.raises(ValueError):
        chunk_text("text", strategy="semantic")


def test_absorbed_tail_stays_within_max_plus_overlap():
    chunker = TokenWindowChunker(max_tokens=100, overlap=20)

    chunks = chunker.chunk(_words(140))

    assert [c.metadata["word_end"] for c in chunks] == [76, 140]
    assert chunks[-1].token_count > 100
    assert all(c.token_count <= 100 + 20 for c in chunks)
