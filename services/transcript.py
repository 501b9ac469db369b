from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4
import asyncio
import logging

from models.chat import ChatMessage, SenderType
from services.database import DatabaseService

logger = logging.getLogger(__name__)


class ChatTranscript:
    """In-memory message list for one chat session

    Loaded once from the database, then extended locally as messages are sent
    and streamed. The whole session is held in memory.
    """

    def __init__(self, session_id: str, db: DatabaseService = None):
        self.session_id = session_id
        self.db = db or DatabaseService()
        self._messages: List[ChatMessage] = []
        self._streaming: Optional[ChatMessage] = None

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def streaming_message(self) -> Optional[ChatMessage]:
        return self._streaming

    @property
    def is_streaming(self) -> bool:
        return self._streaming is not None

    async def load(self) -> List[ChatMessage]:
        """Rehydrate the session's messages in creation order"""
        messages = await asyncio.to_thread(self.db.get_session_messages, self.session_id)
        self._messages = sorted(messages, key=lambda message: message.created_at)
        self._streaming = None
        logger.info(f"Loaded {len(self._messages)} messages for session {self.session_id}")
        return self.messages

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        return message

    def begin_ai_message(self) -> ChatMessage:
        """Append an empty AI message marked as in progress"""
        if self._streaming is not None:
            raise RuntimeError("An AI message is already streaming in this session")

        message = ChatMessage(
            id=f"pending-{uuid4()}",
            chat_session_id=self.session_id,
            sender_type=SenderType.AI,
            content="",
            created_at=datetime.now(timezone.utc),
            is_streaming=True,
        )
        self._streaming = self.append(message)
        return message

    def append_chunk(self, chunk: str) -> ChatMessage:
        """Concatenate a streamed chunk onto the in-progress message"""
        if self._streaming is None:
            raise RuntimeError("No AI message is streaming")
        self._streaming.content += chunk
        return self._streaming

    def finish_ai_message(self) -> ChatMessage:
        if self._streaming is None:
            raise RuntimeError("No AI message is streaming")
        message = self._streaming
        message.is_streaming = False
        self._streaming = None
        return message

    def fail_ai_message(self, error: str) -> Optional[ChatMessage]:
        """Stop streaming but keep whatever content arrived"""
        message = self._streaming
        if message is None:
            return None
        message.is_streaming = False
        message.error = error
        self._streaming = None
        logger.warning(f"AI message in session {self.session_id} ended with error: {error}")
        return message
