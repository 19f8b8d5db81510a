"""Tests for LineChunker."""

from __future__ import annotations

import pytest

from quarry.indexer.scanner import hash_file
from quarry.ingest.code import LineChunker


def _lines(n: int) -> str:
    return "\n".join(f"x{i} = {i}" for i in range(1, n + 1))


def _ranges(chunks):
    return [(c.metadata["line_start"], c.metadata["line_end"]) for c in chunks]


def test_short_file_is_one_chunk():
    chunks = LineChunker().chunk(_lines(12))
    assert _ranges(chunks) == [(1, 12)]
    assert chunks[0].metadata["strategy"] == "code"
    assert chunks[0].metadata["hash"] == hash_file(chunks[0].content)


def test_file_below_min_lines_is_dropped():
    assert LineChunker(min_lines=5).chunk(_lines(4)) == []


def test_blank_file_is_dropped():
    assert LineChunker(min_lines=1).chunk("   ") == []


def test_windows_without_breaks_overlap():
    chunks = LineChunker(max_lines=10, min_lines=2, overlap_lines=3).chunk(_lines(24))
    assert _ranges(chunks) == [(1, 10), (8, 17), (15, 24)]
    assert [c.index for c in chunks] == [0, 1, 2]


def test_cut_moves_to_natural_break():
    lines = [f"line{i}" for i in range(1, 21)]
    lines[5] = "}"  # line 6
    chunks = LineChunker(max_lines=8, min_lines=2, overlap_lines=0).chunk("\n".join(lines))
    assert _ranges(chunks)[0] == (1, 6)
    assert chunks[0].content.endswith("}")


def test_scenario_alpha_beta_gamma_delta():
    text = "\n".join(
        [
            "function alpha() {",
            "  return 1;",
            "}",
            "",
            "function beta() {",
            "  return 2;",
            "}",
            "",
            "function gamma() { return 3; }",
            "function delta() { return 4; }",
        ]
    )
    chunks = LineChunker(max_lines=6, min_lines=2, overlap_lines=2).chunk(text)
    assert _ranges(chunks) == [(1, 4), (3, 8), (7, 10)]
    assert chunks[0].content.startswith("function alpha()")


def test_line_ranges_cover_every_line():
    text = _lines(57)
    chunks = LineChunker(max_lines=10, min_lines=1, overlap_lines=2).chunk(text)
    covered = set()
    for start, end in _ranges(chunks):
        assert start <= end
        covered.update(range(start, end + 1))
    assert covered == set(range(1, 58))


def test_chunk_content_matches_lines():
    text = _lines(30)
    source = text.split("\n")
    for c in LineChunker(max_lines=10, min_lines=2, overlap_lines=3).chunk(text):
        start, end = c.metadata["line_start"], c.metadata["line_end"]
        assert c.content == "\n".join(source[start - 1 : end])


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_lines": 0},
        {"max_lines": 10, "min_lines": 0},
        {"max_lines": 10, "min_lines": 11},
        {"max_lines": 10, "overlap_lines": 10},
        {"max_lines": 10, "overlap_lines": -1},
    ],
)
def test_invalid_parameters(kwargs):
    with pytest.raises(ValueError):
        LineChunker(**kwargs)
