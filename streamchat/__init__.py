"""Streaming chat client for OpenAI-compatible LLM APIs, with thinking-block awareness."""

__version__ = "0.1.0"
