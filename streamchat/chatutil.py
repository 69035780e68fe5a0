"""Utilities for LLM chat messages: creation, thought block handling, and formatting."""

__all__ = ["create_chat_message",
           "format_current_datetime",
           "extract_thinking_segment", "strip_thinking_segment",
           "format_duration",
           "format_token_usage", "format_time_usage", "format_total_usage",
           "make_json_result", "format_json_result"]

import datetime
import json
from typing import Dict, Optional

from mcpyrate import colorizer

from unpythonic.env import env

from .segments import end_delimiter, start_delimiter

roles = ("system", "user", "assistant")

# --------------------------------------------------------------------------------
# Display formatting utilities

def _yell_if_unsupported_markup(markup):
    if markup not in ("ansi", None):
        raise ValueError(f"unknown markup kind '{markup}'; valid values: 'ansi' (*nix terminal) and the special value `None`.")

def _label(text: str, markup: Optional[str]) -> str:
    if markup == "ansi":
        return colorizer.colorize(text, colorizer.Style.BRIGHT)
    return text

# --------------------------------------------------------------------------------
# Chat message creation utilities

def create_chat_message(role: str, text: str) -> Dict:
    """Create a new chat message in the OpenAI format: `{"role": ..., "content": ...}`.

    `role`: One of "system", "user", "assistant".
    """
    if role not in roles:
        raise ValueError(f"Unknown role '{role}'; valid: one of 'system', 'user', 'assistant'.")
    return {"role": role,
            "content": text}

_weekdays = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_months = ["January", "February", "March", "April", "May", "June",
           "July", "August", "September", "October", "November", "December"]
def format_current_datetime(now: Optional[datetime.datetime] = None) -> str:
    """Format the local date and time for the system prompt, e.g. "Tuesday 1 September 2025, 10:17 AM".

    `now`: The moment to format. If `None`, use the current local time.

    Month and weekday names are always in English, regardless of locale.
    """
    if now is None:
        now = datetime.datetime.now()
    hour12 = now.hour % 12 or 12
    ampm = "AM" if now.hour < 12 else "PM"
    return f"{_weekdays[now.weekday()]} {now.day} {_months[now.month - 1]} {now.year}, {hour12}:{now.minute:02d} {ampm}"

# --------------------------------------------------------------------------------
# Thought block utilities
#
# These operate on the first complete `<think> ... </think>` pair only.
# Any further pairs are left as-is, in the part of the text after the first pair.

def _find_thinking_segment(text: str) -> Optional[slice]:
    start_idx = text.find(start_delimiter)
    if start_idx == -1:
        return None
    end_idx = text.find(end_delimiter, start_idx + len(start_delimiter))
    if end_idx == -1:  # opened but not closed
        return None
    return slice(start_idx, end_idx + len(end_delimiter))

def extract_thinking_segment(text: str) -> str:
    """Return the thought block of `text`, tags included, with surrounding whitespace stripped.

    If `text` has no complete thought block, return the empty string.
    """
    segment = _find_thinking_segment(text)
    if segment is None:
        return ""
    return text[segment].strip()

def strip_thinking_segment(text: str) -> str:
    """Return the part of `text` after its thought block, with surrounding whitespace stripped.

    If `text` has no complete thought block, return `text` unchanged (not stripped).

    Text *before* the thought block is dropped, too. Thinking models write the thought block
    first, so in practice this is at most some whitespace.
    """
    segment = _find_thinking_segment(text)
    if segment is None:
        return text
    return text[segment.stop:].strip()

# --------------------------------------------------------------------------------
# Statistics formatting utilities

def format_duration(seconds: float) -> str:
    """Format a duration, rounded to milliseconds, e.g. '0s', '850ms', '2s', '2.345s', '1m3.5s', '1h0m0s'."""
    ms = round(seconds * 1000)
    if ms == 0:
        return "0s"
    if ms < 1000:
        return f"{ms}ms"
    hours, ms = divmod(ms, 3600000)
    minutes, ms = divmod(ms, 60000)
    secs = f"{ms / 1000:0.3f}".rstrip("0").rstrip(".") + "s"
    if hours:
        return f"{hours}h{minutes}m{secs}"
    if minutes:
        return f"{minutes}m{secs}"
    return secs

def format_token_usage(stats: env, markup: Optional[str] = None) -> str:
    """Format the token counts of the current interaction.

    `stats`: from `UsageAccumulator.snapshot`.
    `markup`: "ansi" for terminal colors, or `None` for plain text.
    """
    _yell_if_unsupported_markup(markup)
    total = stats.input_tokens + stats.output_tokens
    return f"{_label('Tokens', markup)}: Input {stats.input_tokens} | Output {stats.output_tokens} | Total {total}"

def format_time_usage(stats: env, markup: Optional[str] = None) -> Optional[str]:
    """Format the timing of the current interaction.

    When any time was attributed to the thinking or response segments, show the breakdown.
    Otherwise show the wall time of the whole interaction.

    Returns `None` if the interaction has not finished (or took no time at all).
    """
    _yell_if_unsupported_markup(markup)
    if stats.start_time is None or stats.end_time is None:
        return None
    wall_time = stats.end_time - stats.start_time
    if wall_time <= 0:
        return None
    if stats.thinking_time > 0 or stats.response_time > 0:
        return (f"{_label('Time', markup)}: Thinking {format_duration(stats.thinking_time)} | "
                f"Response {format_duration(stats.response_time)} | "
                f"Total {format_duration(stats.thinking_time + stats.response_time)}")
    return f"{_label('Time', markup)}: {format_duration(wall_time)}"

def format_total_usage(totals: env, markup: Optional[str] = None) -> str:
    """Format the lifetime token totals (`UsageAccumulator.totals`)."""
    _yell_if_unsupported_markup(markup)
    combined = totals.input_tokens + totals.output_tokens
    return f"{_label('Total tokens used', markup)}: Input {totals.input_tokens} | Output {totals.output_tokens} | Combined {combined}"

def make_json_result(text: str, stats: env) -> Dict:
    """Build the machine-readable result of one interaction.

    `text`: the full response text, thought block included (if it was kept).
    `stats`: from `UsageAccumulator.snapshot`.

    Times are integer milliseconds, truncated.
    """
    thinking_ms = int(stats.thinking_time * 1000)
    response_ms = int(stats.response_time * 1000)
    return {"response": strip_thinking_segment(text),
            "thinking": extract_thinking_segment(text),
            "stats": {"tokens": {"input": stats.input_tokens,
                                 "output": stats.output_tokens,
                                 "total": stats.input_tokens + stats.output_tokens},
                      "time": {"thinking_ms": thinking_ms,
                               "response_ms": response_ms,
                               "total_ms": int((stats.thinking_time + stats.response_time) * 1000)}}}

def format_json_result(text: str, stats: env) -> str:
    """Like `make_json_result`, but serialize to a single-line JSON string."""
    return json.dumps(make_json_result(text, stats), ensure_ascii=False)
