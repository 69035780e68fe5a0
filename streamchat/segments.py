"""Classify streamed LLM output fragments into thinking and response segments.

Thinking models (QwQ-32B, Qwen3, the DeepSeek-R1 distills, ...) write their reasoning inside
a thought block, `<think> ... </think>`, before the final answer. When streaming, the backend
sends the text one fragment (typically one token) at a time, and the tags arrive as fragments
of their own.

The classifier only recognizes a delimiter when it arrives as a complete fragment. A tag split
across two fragments (e.g. "<thi", "nk>") is treated as ordinary content, so half a tag may leak
into the visible output. This is a known limitation, not an error.

The classifier is driven by `streamchat.streaming.StreamPump`.
"""

__all__ = ["start_delimiter", "end_delimiter",
           "kind_thinking", "kind_response",
           "transition_enter", "transition_exit",
           "SegmentClassifier"]

from typing import Optional

from unpythonic import sym
from unpythonic.env import env

start_delimiter = "<think>"
end_delimiter = "</think>"

kind_thinking = sym("thinking")  # inside a thought block
kind_response = sym("response")  # visible answer text

transition_enter = sym("enter")  # this fragment opened a thought block
transition_exit = sym("exit")  # this fragment closed a thought block


class SegmentClassifier:
    def __init__(self, hide_thinking: bool = False):
        """State machine that tracks whether the stream is currently inside a thought block.

        `hide_thinking`: If `True`, the thought block (delimiters and content) is marked as not
                         to be emitted. If `False`, everything is emitted verbatim, delimiters
                         included, so that the final text can still be split with
                         `streamchat.chatutil.extract_thinking_segment` and
                         `streamchat.chatutil.strip_thinking_segment`.

        One classifier handles one stream; create a new one for each session.
        """
        self.hide_thinking = hide_thinking
        self.inside_thinking = False

    @property
    def kind(self) -> sym:
        """The segment kind at the current position of the stream."""
        return kind_thinking if self.inside_thinking else kind_response

    def classify(self, fragment: str) -> Optional[env]:
        """Classify the next `fragment` of the stream, updating the state.

        Returns `None` for an empty fragment (ignored; the state does not change).

        Otherwise returns an `unpythonic.env.env` with the following attributes:

            `kind`: `kind_thinking` or `kind_response`. The segment the fragment belongs to,
                    evaluated after applying any transition triggered by this same fragment.
                    So the opening tag is `kind_thinking`, and the closing tag `kind_response`.

            `transition`: `transition_enter`, `transition_exit`, or `None`.

            `delimiter`: bool. Whether the fragment was a tag that caused a transition.

            `emit`: bool. Whether the fragment should be kept in the response text
                    and forwarded for display, according to the hide-thinking policy.
        """
        if not fragment:
            return None

        transition = None
        if not self.inside_thinking and fragment == start_delimiter:
            self.inside_thinking = True
            transition = transition_enter
        elif self.inside_thinking and fragment == end_delimiter:
            self.inside_thinking = False
            transition = transition_exit

        if transition is not None:  # tags belong to the thought block
            emit = not self.hide_thinking
        else:
            emit = not (self.hide_thinking and self.inside_thinking)

        return env(kind=self.kind,
                   transition=transition,
                   delimiter=(transition is not None),
                   emit=emit)
