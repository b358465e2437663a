"""
Conversation data structures

The transcript is an append-only sequence of immutable messages; insertion
order is display order and export order.
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List

# Assistant messages starting with this phrase are session summaries
SUMMARY_MARKER = "ملخص الجلسة العلاجية:"


class MessageRole(str, Enum):
    """Author of a transcript message"""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """
    Transcript message

    Attributes:
        id: Unique id, increasing in creation order
        role: Author of the message
        content: Message text
        created_at: Creation timestamp
    """
    id: int
    role: MessageRole
    content: str
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_summary(self) -> bool:
        """Whether this assistant message is a session summary"""
        return (
            self.role == MessageRole.ASSISTANT
            and self.content.strip().startswith(SUMMARY_MARKER)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "is_summary": self.is_summary,
        }


@dataclass
class ConversationSession:
    """
    Active conversation

    Attributes:
        handle: Opaque model backend session handle
        messages: Transcript in insertion order
        pending: True while a model reply is awaited
    """
    handle: Any
    messages: List[Message] = field(default_factory=list)
    pending: bool = False


@dataclass(frozen=True)
class ExportArtifact:
    """Downloadable text file"""
    filename: str
    content: str
    media_type: str = "text/plain; charset=utf-8"


__all__ = [
    "SUMMARY_MARKER",
    "MessageRole",
    "Message",
    "ConversationSession",
    "ExportArtifact",
]
