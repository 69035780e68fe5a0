"""Unit tests for streamchat.usage."""

import threading

import pytest

from streamchat.segments import kind_response, kind_thinking
from streamchat.usage import UsageAccumulator


@pytest.fixture
def usage():
    u = UsageAccumulator()
    u.reset_interaction(0.0)
    return u


# ---------------------------------------------------------------------------
# Token counts
# ---------------------------------------------------------------------------

class TestRecordUsage:
    def test_initial(self):
        stats = UsageAccumulator().snapshot()
        assert stats.input_tokens == 0
        assert stats.output_tokens == 0
        assert stats.total_input_tokens == 0
        assert stats.total_output_tokens == 0
        assert stats.start_time is None
        assert stats.end_time is None
        assert stats.open_segment is None

    def test_single_summary(self, usage):
        usage.record_usage(10, 20)
        stats = usage.snapshot()
        assert (stats.input_tokens, stats.output_tokens) == (10, 20)
        assert (stats.total_input_tokens, stats.total_output_tokens) == (10, 20)

    def test_cumulative_summaries_counted_once(self, usage):
        usage.record_usage(10, 5)
        usage.record_usage(10, 12)
        usage.record_usage(10, 20)
        stats = usage.snapshot()
        assert (stats.input_tokens, stats.output_tokens) == (10, 20)
        assert (stats.total_input_tokens, stats.total_output_tokens) == (10, 20)

    def test_totals_never_decrease(self, usage):
        usage.record_usage(10, 20)
        usage.record_usage(5, 5)
        totals = usage.totals()
        assert (totals.input_tokens, totals.output_tokens) == (10, 20)

    def test_totals_additive_across_interactions(self, usage):
        usage.record_usage(10, 20)
        usage.finish(1.0)
        usage.reset_interaction(2.0)
        usage.record_usage(3, 4)
        stats = usage.snapshot()
        assert (stats.input_tokens, stats.output_tokens) == (3, 4)
        totals = usage.totals()
        assert (totals.input_tokens, totals.output_tokens) == (13, 24)


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

class TestTiming:
    def test_reset_sets_start(self, usage):
        usage.reset_interaction(5.0)
        stats = usage.snapshot()
        assert stats.start_time == 5.0
        assert stats.end_time is None
        assert stats.thinking_time == 0.0
        assert stats.response_time == 0.0

    def test_open_and_close(self, usage):
        usage.open_segment(kind_thinking, 1.0)
        assert usage.snapshot().open_segment is kind_thinking
        usage.close_segment(kind_thinking, 4.0)
        stats = usage.snapshot()
        assert stats.thinking_time == 3.0
        assert stats.open_segment is None

    def test_opening_other_kind_closes_current(self, usage):
        usage.open_segment(kind_response, 0.0)
        usage.open_segment(kind_thinking, 1.0)
        usage.open_segment(kind_response, 4.0)
        usage.finish(6.0)
        stats = usage.snapshot()
        assert stats.response_time == 3.0
        assert stats.thinking_time == 3.0

    def test_reopening_same_kind_is_noop(self, usage):
        usage.open_segment(kind_response, 1.0)
        usage.open_segment(kind_response, 2.0)
        usage.finish(5.0)
        assert usage.snapshot().response_time == 4.0

    def test_close_without_open_is_noop(self, usage):
        usage.close_segment(kind_thinking, 3.0)
        usage.open_segment(kind_response, 1.0)
        usage.close_segment(kind_thinking, 2.0)  # wrong kind
        stats = usage.snapshot()
        assert stats.thinking_time == 0.0
        assert stats.open_segment is kind_response

    def test_finish_closes_open_interval(self, usage):
        usage.open_segment(kind_thinking, 1.0)
        usage.finish(3.5)
        stats = usage.snapshot()
        assert stats.thinking_time == 2.5
        assert stats.open_segment is None
        assert stats.end_time == 3.5

    def test_reset_discards_open_interval(self, usage):
        usage.open_segment(kind_thinking, 1.0)
        usage.reset_interaction(2.0)
        usage.finish(3.0)
        assert usage.snapshot().thinking_time == 0.0


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class TestSnapshot:
    def test_snapshot_is_a_copy(self, usage):
        usage.record_usage(1, 2)
        stats = usage.snapshot()
        stats.input_tokens = 999
        assert usage.snapshot().input_tokens == 1

    def test_consistent_under_concurrent_updates(self):
        usage = UsageAccumulator()
        usage.reset_interaction(0.0)
        done = threading.Event()

        def writer():
            for k in range(1, 20001):
                usage.record_usage(k, k)
            done.set()

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            while not done.is_set():
                stats = usage.snapshot()
                assert stats.input_tokens == stats.output_tokens
                assert stats.total_input_tokens == stats.total_output_tokens
        finally:
            thread.join()
        stats = usage.snapshot()
        assert (stats.input_tokens, stats.output_tokens) == (20000, 20000)
        assert usage.totals().input_tokens == 20000
