"""Tests for policyrag.context: bounded context assembly."""

from __future__ import annotations

from policyrag.context import TRUNCATION_MARKER, assemble_context
from policyrag.types import RetrievalResult


def _result(chunk_id: str, length: int, similarity: float = 0.9) -> RetrievalResult:
    return RetrievalResult(chunk_id=chunk_id, text="x" * length, similarity=similarity)


class TestAssembleContext:
    def test_everything_fits(self):
        results = [_result("a", 100), _result("b", 200)]
        assert assemble_context(results, 1000) == results

    def test_never_exceeds_budget(self):
        results = [_result("a", 300), _result("b", 300), _result("c", 300)]
        context = assemble_context(results, 750)
        assert sum(len(r.text) for r in context) <= 750

    def test_truncates_with_marker(self):
        context = assemble_context([_result("a", 300), _result("b", 500)], 600)
        assert [r.chunk_id for r in context] == ["a", "b"]
        assert context[1].text.endswith(TRUNCATION_MARKER)
        assert len(context[1].text) == 300

    def test_small_remainder_is_dropped(self):
        context = assemble_context([_result("a", 550), _result("b", 500)], 600)
        assert [r.chunk_id for r in context] == ["a"]

    def test_stops_after_first_overflow(self):
        results = [_result("a", 300), _result("b", 1000), _result("c", 10)]
        context = assemble_context(results, 350)
        assert [r.chunk_id for r in context] == ["a"]

    def test_preserves_order(self):
        results = [_result("low", 10, 0.2), _result("high", 10, 0.9)]
        assert [r.chunk_id for r in assemble_context(results, 100)] == ["low", "high"]

    def test_skips_empty_texts(self):
        results = [_result("empty", 0), _result("a", 10)]
        assert [r.chunk_id for r in assemble_context(results, 100)] == ["a"]

    def test_empty_input(self):
        assert assemble_context([], 100) == []

    def test_truncated_copy_keeps_metadata(self):
        original = RetrievalResult(
            chunk_id="a", text="y" * 500, similarity=0.8, metadata={"title": "AVB"}
        )
        context = assemble_context([original], 200)
        assert context[0].metadata == {"title": "AVB"}
        assert context[0].similarity == 0.8
        assert original.text == "y" * 500
