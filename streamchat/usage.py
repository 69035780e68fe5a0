"""Token and timing statistics for LLM invocations.

The producer (the stream pump, running in a background thread) updates the statistics while the
response streams in; any thread may read them at any time via `UsageAccumulator.snapshot`.
"""

__all__ = ["UsageAccumulator"]

import threading
from typing import Optional, Tuple

from unpythonic import sym
from unpythonic.env import env

from .segments import kind_response, kind_thinking


class UsageAccumulator:
    def __init__(self):
        """Thread-safe statistics for one LLM client.

        Two kinds of counters are kept:

          - Current interaction: token counts and time spent in each segment kind
            (thinking, response) for the latest invocation. Reset by `reset_interaction`.

          - Lifetime totals: token counts summed over all invocations made with this
            accumulator. These never decrease.

        Time values are in seconds, from whatever clock the caller passes in as `now`
        (the stream pump uses `time.monotonic`).

        All methods are O(1) and serialized by `self.lock`.
        """
        self.lock = threading.Lock()
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._clear_interaction(start_time=None)

    def _clear_interaction(self, start_time: Optional[float]) -> None:
        self._input_tokens = 0
        self._output_tokens = 0
        self._start_time = start_time
        self._end_time = None
        self._durations = {kind_thinking: 0.0,
                           kind_response: 0.0}
        # The open interval: `None`, or `(kind, t0)`. At most one interval is open at any time.
        self._open_interval: Optional[Tuple[sym, float]] = None

    def _close_open_interval(self, now: float) -> None:
        if self._open_interval is not None:
            kind, t0 = self._open_interval
            self._durations[kind] += now - t0
            self._open_interval = None

    def reset_interaction(self, now: float) -> None:
        """Start a new interaction at time `now`. Zero the current-interaction counters and timers.

        Lifetime totals are not affected.
        """
        with self.lock:
            self._clear_interaction(start_time=now)

    def record_usage(self, input_tokens: int, output_tokens: int) -> None:
        """Record a usage summary reported by the LLM backend.

        Usage summaries are cumulative snapshots for the current request, not deltas.
        The current-interaction counters are overwritten with the new values, and the
        increase since the previously recorded snapshot is added to the lifetime totals.
        Hence, no matter how many summaries arrive, by the end of the interaction the totals
        have grown by exactly the final reported counts.
        """
        with self.lock:
            self._total_input_tokens += max(0, input_tokens - self._input_tokens)
            self._total_output_tokens += max(0, output_tokens - self._output_tokens)
            self._input_tokens = input_tokens
            self._output_tokens = output_tokens

    def open_segment(self, kind: sym, now: float) -> None:
        """Start timing a segment of `kind` (`kind_thinking` or `kind_response`) at time `now`.

        If an interval of the other kind is open, it is closed first, at `now`.
        If an interval of the same kind is already open, it keeps running (no-op).
        """
        with self.lock:
            if self._open_interval is not None:
                if self._open_interval[0] is kind:
                    return
                self._close_open_interval(now)
            self._open_interval = (kind, now)

    def close_segment(self, kind: sym, now: float) -> None:
        """Stop timing the segment of `kind` at time `now`, if one is open. Otherwise no-op."""
        with self.lock:
            if self._open_interval is not None and self._open_interval[0] is kind:
                self._close_open_interval(now)

    def finish(self, now: float) -> None:
        """End the current interaction at time `now`. Close whichever interval is still open."""
        with self.lock:
            self._close_open_interval(now)
            self._end_time = now

    def snapshot(self) -> env:
        """Return a consistent point-in-time copy of the statistics.

        The returned `unpythonic.env.env` has the attributes:

            `input_tokens`, `output_tokens`: int, current interaction.
            `thinking_time`, `response_time`: float, seconds, closed intervals only.
            `start_time`, `end_time`: float or `None`.
            `open_segment`: `kind_thinking`, `kind_response`, or `None`.
            `total_input_tokens`, `total_output_tokens`: int, lifetime.

        The copy is independent of the accumulator; modifying it has no effect.
        """
        with self.lock:
            return env(input_tokens=self._input_tokens,
                       output_tokens=self._output_tokens,
                       thinking_time=self._durations[kind_thinking],
                       response_time=self._durations[kind_response],
                       start_time=self._start_time,
                       end_time=self._end_time,
                       open_segment=(self._open_interval[0] if self._open_interval is not None else None),
                       total_input_tokens=self._total_input_tokens,
                       total_output_tokens=self._total_output_tokens)

    def totals(self) -> env:
        """Return the lifetime token totals as an `env` with `input_tokens` and `output_tokens`."""
        with self.lock:
            return env(input_tokens=self._total_input_tokens,
                       output_tokens=self._total_output_tokens)
