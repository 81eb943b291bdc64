"""
In-call chat log

Minimal chat collaborator: keeps the messages of the current call in memory.
History across calls is someone else's job.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional


@dataclass
class ChatMessage:
    sender: str
    text: str
    time: datetime = field(default_factory=datetime.now)


class ChatLog:
    def __init__(self, on_message: Optional[Callable[[ChatMessage], None]] = None):
        self.on_message = on_message
        self._messages: List[ChatMessage] = []

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def add_message(self, sender: str, text: str) -> None:
        message = ChatMessage(sender=sender, text=text)
        self._messages.append(message)
        if self.on_message:
            self.on_message(message)

    def clear(self) -> None:
        self._messages.clear()
