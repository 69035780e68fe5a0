"""Unit tests for streamchat.history."""

import pytest

from streamchat.history import ChatHistory


class TestChatHistory:
    def test_empty(self):
        assert len(ChatHistory()) == 0
        assert ChatHistory().get_messages() == []

    def test_order_preserved(self):
        history = ChatHistory()
        history.add_system_message("You are a helpful assistant.")
        history.add_user_message("Hi!")
        history.add_assistant_message("Hello! How can I help?")
        assert history.get_messages() == [{"role": "system", "content": "You are a helpful assistant."},
                                          {"role": "user", "content": "Hi!"},
                                          {"role": "assistant", "content": "Hello! How can I help?"}]
        assert len(history) == 3

    def test_get_messages_returns_copy(self):
        history = ChatHistory()
        history.add_user_message("Hi!")
        messages = history.get_messages()
        messages[0]["content"] = "changed"
        messages.append({"role": "user", "content": "extra"})
        assert history.get_messages() == [{"role": "user", "content": "Hi!"}]

    def test_unknown_role(self):
        history = ChatHistory()
        with pytest.raises(ValueError):
            history.add_message({"role": "tool", "content": "42"})
        assert len(history) == 0

    def test_clear(self):
        history = ChatHistory()
        history.add_user_message("Hi!")
        history.clear()
        assert len(history) == 0
