"""
Client side of the streaming chat completion endpoint.

ChatStreamClient posts a ChatRequest and exposes the chunked text response as
an async iterator, bounded by a wait policy (first chunk, idle gap, total
duration) and a CancellationToken. StreamingMessageConsumer applies the
chunks to an in-progress AI message in a ChatTranscript.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterable, AsyncIterator, Callable, Optional

import httpx

from config import settings
from models.chat import ChatMessage, ChatRequest
from services.transcript import ChatTranscript

logger = logging.getLogger(__name__)


class ChatStreamError(Exception):
    """Streaming reply failed after it started"""


class ChatSendError(ChatStreamError):
    """Request was rejected or never reached the endpoint; nothing was streamed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChatStreamTimeout(ChatStreamError):
    pass


class ChatStreamCancelled(ChatStreamError):
    pass


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


async def _next_chunk(chunks: AsyncIterator[str]) -> Optional[str]:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class ChatStream:
    """Open streaming response. Iterate it for decoded text chunks."""

    def __init__(
        self,
        response: httpx.Response,
        token: Optional[CancellationToken],
        first_chunk_timeout: float,
        idle_timeout: float,
        max_duration: float,
    ):
        self.response = response
        self.token = token
        self.first_chunk_timeout = first_chunk_timeout
        self.idle_timeout = idle_timeout
        self.max_duration = max_duration

        self.user_message_id = response.headers.get("X-User-Message-Id")
        self.user_message_created_at = response.headers.get("X-User-Message-Created-At")

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration
        chunks = self.response.aiter_text()
        received_any = False

        cancelled = loop.create_task(self.token.wait()) if self.token else None
        try:
            while True:
                if self.token is not None and self.token.cancelled:
                    raise ChatStreamCancelled("Stream cancelled")

                wait_limit = self.idle_timeout if received_any else self.first_chunk_timeout
                timeout = min(wait_limit, deadline - loop.time())
                if timeout <= 0:
                    raise ChatStreamTimeout(f"Stream exceeded {self.max_duration}s")

                pending = loop.create_task(_next_chunk(chunks))
                waiting = {pending, cancelled} if cancelled else {pending}
                done, _ = await asyncio.wait(waiting, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

                if pending not in done:
                    pending.cancel()
                    await asyncio.wait({pending})
                    if cancelled is not None and cancelled in done:
                        raise ChatStreamCancelled("Stream cancelled")
                    raise ChatStreamTimeout(f"No response data for {timeout:.1f}s")

                try:
                    chunk = pending.result()
                except (httpx.HTTPError, httpx.StreamError) as e:
                    raise ChatStreamError(f"Stream interrupted: {e}") from e

                if chunk is None:
                    return
                if chunk:
                    received_any = True
                    yield chunk
        finally:
            if cancelled is not None:
                cancelled.cancel()


class ChatStreamClient:
    """Posts chat requests to the AI chat endpoint and streams the reply"""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        first_chunk_timeout: Optional[float] = None,
        idle_timeout: Optional[float] = None,
        max_duration: Optional[float] = None,
    ):
        self.url = url or settings.CHAT_FUNCTION_URL
        self.api_key = api_key
        self._http = http_client
        self.first_chunk_timeout = (
            settings.STREAM_FIRST_CHUNK_TIMEOUT_SECONDS if first_chunk_timeout is None else first_chunk_timeout
        )
        self.idle_timeout = settings.STREAM_IDLE_TIMEOUT_SECONDS if idle_timeout is None else idle_timeout
        self.max_duration = settings.STREAM_MAX_DURATION_SECONDS if max_duration is None else max_duration

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or "Failed to send message"
        if isinstance(data, dict):
            return str(data.get("detail") or data.get("error") or "Failed to send message")
        return "Failed to send message"

    @asynccontextmanager
    async def open(self, request: ChatRequest, token: Optional[CancellationToken] = None) -> AsyncIterator[ChatStream]:
        """Send the request and yield the open stream

        Raises:
            ChatSendError: endpoint unreachable or returned an error status
        """
        owns_client = self._http is None
        # read timeout disabled: the stream's own wait policy bounds reads
        client = self._http or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))

        try:
            http_request = client.build_request(
                "POST", self.url, json=request.to_payload(), headers=self._headers()
            )
            try:
                response = await client.send(http_request, stream=True)
            except httpx.HTTPError as e:
                raise ChatSendError(f"Failed to reach chat endpoint: {e}") from e

            try:
                if response.is_error:
                    await response.aread()
                    raise ChatSendError(self._error_detail(response), status_code=response.status_code)

                yield ChatStream(
                    response,
                    token,
                    first_chunk_timeout=self.first_chunk_timeout,
                    idle_timeout=self.idle_timeout,
                    max_duration=self.max_duration,
                )
            finally:
                await response.aclose()
        finally:
            if owns_client:
                await client.aclose()


class StreamingMessageConsumer:
    """Materializes a streamed reply as a live-updating AI message"""

    def __init__(self, transcript: ChatTranscript, on_token: Optional[Callable[[str], None]] = None):
        self.transcript = transcript
        self.on_token = on_token
        self.message: Optional[ChatMessage] = None

    def begin(self) -> ChatMessage:
        self.message = self.transcript.begin_ai_message()
        return self.message

    def feed(self, chunk: str):
        self.transcript.append_chunk(chunk)
        if self.on_token:
            self.on_token(chunk)

    def finish(self) -> ChatMessage:
        return self.transcript.finish_ai_message()

    def fail(self, error: BaseException) -> Optional[ChatMessage]:
        return self.transcript.fail_ai_message(str(error) or error.__class__.__name__)

    async def consume(self, chunks: AsyncIterable[str]) -> ChatMessage:
        """Append every chunk in arrival order, then finalize the message"""
        if self.message is None:
            self.begin()

        try:
            async for chunk in chunks:
                self.feed(chunk)
        except BaseException as e:
            # the placeholder never stays in progress once consume exits, whatever raised
            self.fail(e)
            raise

        return self.finish()
