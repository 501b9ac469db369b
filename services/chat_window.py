"""
ChatWindow: the mention-aware chat input and streaming transcript for one session.

Keystroke -> tokenizer finds the active mention -> debounced search fills the
dropdown -> a selected candidate is written into both text forms -> on send
the storage form goes upstream and the reply streams into the transcript.

Must be driven from a running asyncio event loop.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional, Union
from uuid import uuid4
import logging

from models.chat import ChatMessage, ChatRequest, SenderType
from models.mention import MentionCandidate, MentionState
from models.user import CurrentUser
from processors.mention_parser import mentions_from_metadata, mentions_metadata, render_markdown
from processors.message_buffer import MessageBuffer
from services.chat_stream import (
    CancellationToken,
    ChatStream,
    ChatStreamClient,
    ChatStreamError,
    StreamingMessageConsumer,
)
from services.database import DatabaseService
from services.mention_search import MentionSearchController, MentionSearchService
from services.transcript import ChatTranscript

logger = logging.getLogger(__name__)


class ChatWindow:
    """Chat window state for one supporter and one session"""

    def __init__(
        self,
        session_id: str,
        current_user: CurrentUser,
        db: DatabaseService = None,
        stream_client: Optional[ChatStreamClient] = None,
        search_service: Optional[MentionSearchService] = None,
        debounce_seconds: Optional[float] = None,
        on_token: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_complete: Optional[Callable[[ChatMessage], None]] = None,
    ):
        self.session_id = session_id
        self.current_user = current_user
        self.db = db or DatabaseService()
        self.stream_client = stream_client or ChatStreamClient()

        self.transcript = ChatTranscript(session_id, self.db)
        self.buffer = MessageBuffer()
        self.mentions = MentionSearchController(
            search_service or MentionSearchService(self.db),
            debounce_seconds=debounce_seconds,
        )

        self.on_token = on_token
        self.on_error = on_error
        self.on_complete = on_complete

        self.caret = 0
        self.last_error: Optional[str] = None
        self._sending = False
        self._token: Optional[CancellationToken] = None

    # Transcript

    async def load(self) -> List[ChatMessage]:
        return await self.transcript.load()

    @property
    def messages(self) -> List[ChatMessage]:
        return self.transcript.messages

    def rendered_messages(self) -> List[str]:
        """Transcript content with mentions emphasised, derived from what was persisted"""
        return [
            render_markdown(message.content, mentions_from_metadata(message.metadata))
            for message in self.transcript.messages
        ]

    # Input

    @property
    def display_text(self) -> str:
        return self.buffer.display_text

    @property
    def storage_text(self) -> str:
        return self.buffer.storage_text

    @property
    def is_streaming(self) -> bool:
        return self._sending or self.transcript.is_streaming

    @property
    def can_send(self) -> bool:
        return not self.buffer.is_blank and not self.is_streaming

    def handle_input(self, display_text: str, caret: int) -> MentionState:
        """Apply an edit from the input field and refresh the mention dropdown"""
        self.caret = self.buffer.replace_text(display_text, caret)
        return self._refresh_mention_state()

    def move_caret(self, caret: int) -> MentionState:
        self.caret = max(0, min(caret, len(self.buffer.display_text)))
        return self._refresh_mention_state()

    def _refresh_mention_state(self) -> MentionState:
        state = self.buffer.active_mention(self.caret)
        if state.active:
            if not self.mentions.is_open or self.mentions.query != state.search_term:
                self.mentions.update(state.search_term)
        elif self.mentions.is_open:
            self.mentions.close()
        return state

    def select_mention(self, candidate: Optional[MentionCandidate] = None) -> bool:
        """Insert the given (or highlighted) candidate at the active mention"""
        candidate = candidate or self.mentions.highlighted()
        if candidate is None:
            return False

        self.caret = self.buffer.insert_mention(self.caret, candidate)
        self.mentions.close()
        return True

    async def handle_key(self, key: str) -> bool:
        """Handle a navigation key. Returns True if the key was consumed."""
        if self.mentions.has_candidates:
            if key == "ArrowDown":
                self.mentions.move_highlight(1)
            elif key == "ArrowUp":
                self.mentions.move_highlight(-1)
            elif key in ("Enter", "Tab"):
                self.select_mention()
            elif key == "Escape":
                self.mentions.close()
            else:
                return False
            return True

        if key == "Escape" and self.mentions.is_open:
            self.mentions.close()
            return True

        if key == "Enter" and not self.mentions.is_open:
            await self.send()
            return True

        return False

    # Sending

    def _build_request(self) -> ChatRequest:
        mentions = self.buffer.mentions
        return ChatRequest(
            message=self.buffer.storage_text,
            session_id=self.session_id,
            supporter_id=self.current_user.supporter_id,
            metadata={"mentions": mentions_metadata(mentions)} if mentions else None,
        )

    def _user_message(self, request: ChatRequest, stream: ChatStream) -> ChatMessage:
        return ChatMessage(
            id=stream.user_message_id or f"local-{uuid4()}",
            chat_session_id=self.session_id,
            sender_type=SenderType.USER,
            content=request.message,
            created_at=stream.user_message_created_at or datetime.now(timezone.utc),
            metadata=request.metadata or {},
        )

    async def send(self) -> Optional[ChatMessage]:
        """Send the current input and stream the AI reply into the transcript

        The user message is only appended once the endpoint has accepted (and
        persisted) it; on failure the input is left untouched.

        Returns:
            The finished AI message, or None if there was nothing to send
        """
        if not self.can_send:
            logger.debug("Send ignored: input empty or a reply is still streaming")
            return None

        request = self._build_request()
        consumer = StreamingMessageConsumer(self.transcript, on_token=self.on_token)
        self._token = CancellationToken()
        self._sending = True
        self.last_error = None

        try:
            async with self.stream_client.open(request, self._token) as stream:
                self.transcript.append(self._user_message(request, stream))
                self.buffer.clear()
                self.caret = 0
                self.mentions.close()

                reply = await consumer.consume(stream)
        except ChatStreamError as e:
            self.last_error = str(e)
            logger.error(f"AI chat error in session {self.session_id}: {e}")
            if self.on_error:
                self.on_error(e)
            raise
        finally:
            self._sending = False
            self._token = None

        logger.info(f"AI reply completed in session {self.session_id} ({len(reply.content)} chars)")
        if self.on_complete:
            self.on_complete(reply)
        return reply

    def cancel(self):
        """Cancel the reply currently streaming, if any"""
        if self._token is not None:
            self._token.cancel()
