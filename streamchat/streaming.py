"""Stream pump: drain an LLM response stream, classify it, buffer it, forward it for live display.

The pump runs in a background thread, and hands each accepted fragment to the caller's thread
through a one-slot `ForwardingChannel`. Meanwhile it keeps the `UsageAccumulator` up to date.

Typical use (`streamchat.llmclient.invoke` returns such a stream)::

    with stream_response(events, usage, hide_thinking=False) as stream:
        for fragment in stream:  # live update
            print(fragment, end="")
    result = stream.result()  # -> env(text=..., error=...)

The pump itself cannot be cancelled mid-stream. To stop early, close the transport (`ResponseStream.abort`);
the pump then sees an error from the event iterator, and finalizes the same way as on any other error.
"""

__all__ = ["Usage", "StreamEvent",
           "StreamError",
           "ForwardingChannel",
           "StreamPump",
           "ResponseStream", "stream_response",
           "state_idle", "state_streaming", "state_completed", "state_failed"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import collections
import concurrent.futures
import io
import queue
import time
from typing import Callable, Iterable, Optional

from unpythonic import sym
from unpythonic.env import env

from .segments import SegmentClassifier, kind_response, kind_thinking, transition_enter, transition_exit
from .usage import UsageAccumulator

# --------------------------------------------------------------------------------
# Transport events

# Token counts reported by the backend for the request so far (cumulative).
Usage = collections.namedtuple("Usage", ["prompt_tokens", "completion_tokens"])

# One event from the transport.
#   `content`: text delta of the first choice; `None` if the event carried no choices (control frame).
#   `index`: choice index, if any.
#   `usage`: a `Usage`, if the event carried a usage summary.
StreamEvent = collections.namedtuple("StreamEvent", ["content", "index", "usage"], defaults=(None, None, None))

class StreamError(RuntimeError):
    """The transport failed mid-stream.

    `partial_text` holds the response text received before the failure.
    The original exception is available as `__cause__`.
    """

    def __init__(self, msg: str, partial_text: str):
        super().__init__(msg)
        self.partial_text = partial_text

# --------------------------------------------------------------------------------
# Hand-off channel

_closed = sym("closed")

class ForwardingChannel:
    def __init__(self, maxsize: int = 1):
        """Blocking hand-off of text fragments from the producer thread to a consumer thread.

        With the default `maxsize=1`, at most one fragment is in flight; `put` blocks until
        the consumer has taken the previous one.

        Only the producer may call `put` and `close`. The consumer iterates over the channel;
        iteration ends when the producer closes it.
        """
        self._queue = queue.Queue(maxsize=maxsize)
        self.closed = False
        self._drained = False

    def put(self, fragment: str) -> None:
        if self.closed:
            raise RuntimeError("ForwardingChannel.put: channel is closed")
        self._queue.put(fragment)

    def close(self) -> None:
        """Signal the consumer that no more data will arrive. Idempotent."""
        if self.closed:
            return
        self.closed = True
        self._queue.put(_closed)

    def __iter__(self):
        while not self._drained:
            fragment = self._queue.get()
            if fragment is _closed:
                self._drained = True
                return
            yield fragment

    def drain(self, timeout: Optional[float] = None) -> None:
        """Discard fragments until the producer closes the channel.

        `timeout`: seconds to wait for the close, or `None` to wait indefinitely.
                   When it runs out, raise `concurrent.futures.TimeoutError`.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._drained:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                fragment = self._queue.get(timeout=remaining)
            except queue.Empty:
                raise concurrent.futures.TimeoutError(f"ForwardingChannel.drain: channel not closed within {timeout} seconds") from None
            if fragment is _closed:
                self._drained = True

# --------------------------------------------------------------------------------
# The pump

state_idle = sym("idle")
state_streaming = sym("streaming")
state_completed = sym("completed")
state_failed = sym("failed")

class StreamPump:
    def __init__(self,
                 usage: UsageAccumulator,
                 hide_thinking: bool = False,
                 channel: Optional[ForwardingChannel] = None,
                 clock: Callable[[], float] = time.monotonic):
        """Process one streamed LLM response.

        `usage`: Statistics to update. The interaction counters are reset when `run` starts;
                 lifetime totals carry over.

        `hide_thinking`: If `True`, the thought block is neither kept in the response text
                         nor forwarded. Its timing is still measured.

        `channel`: Where to forward accepted fragments for live display. Optional.
                   Closed by the pump when the stream ends, whether normally or by error.

        `clock`: Zero-argument callable returning the current time in seconds.

        A pump is single-use: `run` may be called only once.
        """
        self.usage = usage
        self.channel = channel
        self.clock = clock
        self.classifier = SegmentClassifier(hide_thinking=hide_thinking)
        self.response_started = False
        self.state = state_idle

    def run(self, events: Iterable[StreamEvent]) -> str:
        """Drain `events` to completion. Return the full response text.

        On a transport error, finalize the statistics and close the channel, then raise
        `StreamError` (chained to the original exception), carrying the partial text.
        """
        if self.state is not state_idle:
            raise RuntimeError(f"StreamPump.run: pump is {self.state}, not idle; create a new pump for each stream.")
        self.state = state_streaming
        self.usage.reset_interaction(self.clock())

        buffer = io.StringIO()
        try:
            for event in events:
                self._process(event, buffer)
        except Exception as exc:
            self._finalize()
            self.state = state_failed
            logger.error(f"StreamPump.run: stream failed after {len(buffer.getvalue())} characters: {type(exc)}: {exc}")
            raise StreamError(f"error during streaming: {exc}", buffer.getvalue()) from exc
        self._finalize()
        self.state = state_completed
        return buffer.getvalue()

    def _process(self, event: StreamEvent, buffer: io.StringIO) -> None:
        if event.usage is not None and event.usage.prompt_tokens > 0:
            self.usage.record_usage(event.usage.prompt_tokens, event.usage.completion_tokens)

        if not event.content:  # no choices, or an empty delta
            return
        text = event.content

        now = self.clock()
        if not self.response_started:
            self.usage.open_segment(kind_response, now)
            self.response_started = True

        result = self.classifier.classify(text)
        if result.transition is transition_enter:
            self.usage.open_segment(kind_thinking, now)  # closes the response interval
        elif result.transition is transition_exit:
            self.usage.close_segment(kind_thinking, now)
            self.usage.open_segment(kind_response, now)

        if result.emit:
            buffer.write(text)
            if self.channel is not None:
                self.channel.put(text)

    def _finalize(self) -> None:
        self.usage.finish(self.clock())
        if self.channel is not None:
            self.channel.close()

# --------------------------------------------------------------------------------
# Background pumping

class ResponseStream:
    def __init__(self, future: concurrent.futures.Future, channel: ForwardingChannel, events: Iterable[StreamEvent]):
        """Handle to a response being pumped in a background thread. See `stream_response`.

        Iterate over this to receive the fragments as they arrive. Then call `result`.

        Use as a context manager to make sure the pump thread finishes even if the consumer
        stops early: on leaving the block with an exception, the transport is aborted;
        in any case, the remaining fragments are drained::

            with stream_response(events, usage) as stream:
                for fragment in stream:
                    print(fragment, end="")
            result = stream.result()
        """
        self.future = future
        self.channel = channel
        self.events = events

    def __iter__(self):
        return iter(self.channel)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            self.abort()
        self.channel.drain()
        return False

    def abort(self) -> None:
        """Ask the transport to stop, if it can (i.e. if the event source has a `close` method).

        The close must be safe to call from another thread; `streamchat.llmclient.ChatCompletionStream`'s is.
        The pump then sees an error from the transport, and takes the failure path.
        Call `result` afterward to wait for the finalization.
        """
        close = getattr(self.events, "close", None)
        if close is not None:
            close()

    def result(self, timeout: Optional[float] = None) -> env:
        """Wait for the stream to finish. Return `env(text=..., error=...)`.

        `text`: the response text (partial, if the stream failed).
        `error`: `None` on success, or the `StreamError`.

        `timeout`: seconds to wait in total, or `None` to wait indefinitely. When it runs out,
                   raise `concurrent.futures.TimeoutError`; the stream keeps going, and `result`
                   may be called again.

        Any fragments not yet consumed are drained (and discarded) first,
        so that the producer can finish.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self.channel.drain(timeout=timeout)
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        return self.future.result(timeout=remaining)

def stream_response(events: Iterable[StreamEvent],
                    usage: UsageAccumulator,
                    hide_thinking: bool = False,
                    executor: Optional[concurrent.futures.Executor] = None,
                    clock: Callable[[], float] = time.monotonic) -> ResponseStream:
    """Start pumping `events` in a background thread. Return a `ResponseStream`.

    `executor`: Where to run the pump. If `None`, a single-use thread is created.

    For the other parameters, see `StreamPump`.
    """
    channel = ForwardingChannel()
    pump = StreamPump(usage, hide_thinking=hide_thinking, channel=channel, clock=clock)

    def pump_task() -> env:
        try:
            text = pump.run(events)
        except StreamError as exc:
            return env(text=exc.partial_text, error=exc)
        finally:
            channel.close()  # normally already closed by the pump; never leave the consumer hanging
        return env(text=text, error=None)

    if executor is None:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="streamchat_pump")
        future = executor.submit(pump_task)
        executor.shutdown(wait=False)  # the thread exits when the task is done
    else:
        future = executor.submit(pump_task)
    return ResponseStream(future, channel, events)
