"""In-process conversation history: an ordered, append-only list of chat messages.

The history lives only as long as the process; nothing is saved to disk.
"""

__all__ = ["ChatHistory"]

import copy
from typing import Dict, List

from . import chatutil


class ChatHistory:
    def __init__(self):
        """Conversation history in the OpenAI chat format, ready to send to the LLM."""
        self.messages: List[Dict] = []

    def add_message(self, message: Dict) -> None:
        """Append `message`, a `{"role": ..., "content": ...}` dict. See `chatutil.create_chat_message`."""
        if message.get("role") not in chatutil.roles:
            raise ValueError(f"ChatHistory.add_message: unknown role '{message.get('role')}'")
        self.messages.append(message)

    def add_system_message(self, text: str) -> None:
        self.add_message(chatutil.create_chat_message("system", text))

    def add_user_message(self, text: str) -> None:
        self.add_message(chatutil.create_chat_message("user", text))

    def add_assistant_message(self, text: str) -> None:
        self.add_message(chatutil.create_chat_message("assistant", text))

    def get_messages(self) -> List[Dict]:
        """Return a copy of the messages, so the caller may modify it freely."""
        return copy.deepcopy(self.messages)

    def clear(self) -> None:
        self.messages = []

    def __len__(self) -> int:
        return len(self.messages)
