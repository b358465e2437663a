"""
Conversation Controller - owns the transcript and the model session

Responsibilities:
1. Open one model session and seed the transcript with the opening reply
2. Exchange messages with the model (one send in flight at a time)
3. Export the transcript (full history, or a single session summary)
4. Release the model session on sign-out / teardown

The user message is appended before the backend answers and is never rolled
back; a failed turn appends the fallback reply instead of the model's.
"""

import itertools
import logging
from typing import Optional, Tuple

from ..models.conversation import (
    ConversationSession,
    ExportArtifact,
    Message,
    MessageRole,
)
from .model_backend import ModelBackend

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "عذراً، حدث خطأ ما. يرجى المحاولة مرة أخرى."

SPEAKER_LABELS = {
    MessageRole.USER: "أنت",
    MessageRole.ASSISTANT: "المساعد العلاجي",
}
EXPORT_DELIMITER = "\n\n---------------------------------\n\n"

TRANSCRIPT_FILENAME = "cbt_conversation_history.txt"
SUMMARY_FILENAME = "cbt_session_summary.txt"


def render_transcript(messages) -> str:
    """
    Render messages as `<speaker>:\\n<content>` blocks joined by the delimiter

    Args:
        messages: Messages in transcript order

    Returns:
        Export text
    """
    return EXPORT_DELIMITER.join(
        f"{SPEAKER_LABELS[message.role]}:\n{message.content}"
        for message in messages
    )


class ConversationController:
    """Single conversation with the model backend"""

    def __init__(
        self,
        backend: ModelBackend,
        priming_text: str,
        opening_reply: str
    ):
        """
        Args:
            backend: Model backend collaborator
            priming_text: Hidden context sent once when the session opens
            opening_reply: Scripted first assistant message
        """
        self.backend = backend
        self.priming_text = priming_text
        self.opening_reply = opening_reply

        self._session: Optional[ConversationSession] = None
        self._ids = itertools.count(1)

    @property
    def is_initialized(self) -> bool:
        return self._session is not None

    @property
    def pending(self) -> bool:
        return self._session is not None and self._session.pending

    @property
    def messages(self) -> Tuple[Message, ...]:
        if self._session is None:
            return ()
        return tuple(self._session.messages)

    def _append(self, role: MessageRole, content: str) -> Message:
        message = Message(id=next(self._ids), role=role, content=content)
        self._session.messages.append(message)
        return message

    async def initialize(self) -> None:
        """Open the model session and seed the opening assistant message"""
        if self._session is not None:
            logger.debug("Conversation already initialized")
            return

        handle = await self.backend.create_session(self.priming_text, self.opening_reply)
        if self._session is not None:
            # Initialized by a concurrent caller while the backend was opening
            await self.backend.close_session(handle)
            return

        self._session = ConversationSession(handle=handle)
        self._append(MessageRole.ASSISTANT, self.opening_reply)
        logger.info("Conversation initialized")

    async def send(self, user_text: str) -> Optional[Message]:
        """
        Send one user message

        Args:
            user_text: Text typed by the user

        Returns:
            The appended assistant message (model reply or fallback), or None
            when the send was rejected (empty text, reply pending, no session)
        """
        text = (user_text or "").strip()
        if not text:
            return None
        if self._session is None:
            logger.warning("send() called before initialize()")
            return None
        if self._session.pending:
            logger.info("send() ignored: a reply is already pending")
            return None

        session = self._session
        session.pending = True
        self._append(MessageRole.USER, text)

        try:
            reply = await self.backend.send_message(session.handle, text)
        except Exception as e:
            logger.error(f"Model reply failed: {type(e).__name__}: {e}")
            reply = None
        finally:
            session.pending = False

        if session is not self._session:
            # Released while the reply was in flight
            logger.info("Conversation released during send, reply dropped")
            return None

        if reply is None:
            return self._append(MessageRole.ASSISTANT, FALLBACK_REPLY)
        return self._append(MessageRole.ASSISTANT, reply)

    def export(self) -> str:
        """Full transcript as text"""
        return render_transcript(self.messages)

    def export_transcript(self) -> ExportArtifact:
        return ExportArtifact(filename=TRANSCRIPT_FILENAME, content=self.export())

    def export_summary(self, message_id: int) -> ExportArtifact:
        """
        Export one session summary message

        Raises:
            LookupError: No message with that id
            ValueError: The message is not a summary
        """
        for message in self.messages:
            if message.id == message_id:
                if not message.is_summary:
                    raise ValueError(f"Message {message_id} is not a session summary")
                return ExportArtifact(filename=SUMMARY_FILENAME, content=message.content)
        raise LookupError(f"Message {message_id} not found")

    async def release(self) -> None:
        """Close the model session and drop the transcript"""
        session = self._session
        if session is None:
            return

        self._session = None
        try:
            await self.backend.close_session(session.handle)
        except Exception as e:
            logger.warning(f"Failed to release model session: {e}")
        logger.info(f"Conversation released ({len(session.messages)} messages)")


__all__ = [
    "FALLBACK_REPLY",
    "SPEAKER_LABELS",
    "EXPORT_DELIMITER",
    "TRANSCRIPT_FILENAME",
    "SUMMARY_FILENAME",
    "render_transcript",
    "ConversationController",
]
