"""Unit tests for streamchat.segments."""

import pytest

from streamchat import segments
from streamchat.segments import (SegmentClassifier,
                                 kind_response, kind_thinking,
                                 transition_enter, transition_exit)


def _run(classifier, fragments):
    return [classifier.classify(fragment) for fragment in fragments]


# ---------------------------------------------------------------------------
# Delimiters and state
# ---------------------------------------------------------------------------

class TestDelimiters:
    def test_tags(self):
        assert segments.start_delimiter == "<think>"
        assert segments.end_delimiter == "</think>"

    def test_initial_state(self):
        c = SegmentClassifier()
        assert c.inside_thinking is False
        assert c.kind is kind_response

    def test_enter(self):
        c = SegmentClassifier()
        result = c.classify("<think>")
        assert result.transition is transition_enter
        assert result.delimiter is True
        assert result.kind is kind_thinking
        assert c.inside_thinking is True

    def test_exit(self):
        c = SegmentClassifier()
        c.classify("<think>")
        result = c.classify("</think>")
        assert result.transition is transition_exit
        assert result.delimiter is True
        assert result.kind is kind_response
        assert c.inside_thinking is False

    def test_content_inside(self):
        c = SegmentClassifier()
        c.classify("<think>")
        result = c.classify("hmm")
        assert result.transition is None
        assert result.delimiter is False
        assert result.kind is kind_thinking

    def test_content_outside(self):
        c = SegmentClassifier()
        result = c.classify("hello")
        assert result.transition is None
        assert result.kind is kind_response


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------

class TestEdgeCases:
    def test_empty_fragment_ignored(self):
        c = SegmentClassifier()
        assert c.classify("") is None
        assert c.inside_thinking is False

    def test_empty_fragment_inside_block_keeps_state(self):
        c = SegmentClassifier()
        c.classify("<think>")
        assert c.classify("") is None
        assert c.inside_thinking is True

    def test_end_tag_outside_block_is_content(self):
        c = SegmentClassifier()
        result = c.classify("</think>")
        assert result.transition is None
        assert result.delimiter is False
        assert result.kind is kind_response
        assert result.emit is True

    def test_start_tag_inside_block_is_content(self):
        c = SegmentClassifier()
        c.classify("<think>")
        result = c.classify("<think>")
        assert result.transition is None
        assert result.kind is kind_thinking
        assert c.inside_thinking is True

    def test_tag_with_surrounding_text_is_content(self):
        c = SegmentClassifier()
        result = c.classify("<think>hello")
        assert result.transition is None
        assert c.inside_thinking is False

    def test_split_tag_is_content(self):
        c = SegmentClassifier()
        results = _run(c, ["<thi", "nk>"])
        assert all(r.transition is None for r in results)
        assert c.inside_thinking is False

    def test_second_block(self):
        c = SegmentClassifier()
        results = _run(c, ["<think>", "a", "</think>", "b", "<think>", "c", "</think>"])
        transitions = [r.transition for r in results]
        assert transitions == [transition_enter, None, transition_exit, None, transition_enter, None, transition_exit]

    def test_unterminated_block(self):
        c = SegmentClassifier()
        _run(c, ["<think>", "still", "thinking"])
        assert c.inside_thinking is True
        assert c.kind is kind_thinking


# ---------------------------------------------------------------------------
# Hide-thinking policy
# ---------------------------------------------------------------------------

class TestEmitPolicy:
    fragments = ["<think>", "reasoning", "</think>", "answer"]

    def test_show_everything(self):
        c = SegmentClassifier(hide_thinking=False)
        assert [r.emit for r in _run(c, self.fragments)] == [True, True, True, True]

    def test_hide_thought_block(self):
        c = SegmentClassifier(hide_thinking=True)
        assert [r.emit for r in _run(c, self.fragments)] == [False, False, False, True]

    @pytest.mark.parametrize("hide_thinking", [False, True])
    def test_plain_response_always_emitted(self, hide_thinking):
        c = SegmentClassifier(hide_thinking=hide_thinking)
        assert all(r.emit for r in _run(c, ["Hello", ", ", "world"]))
