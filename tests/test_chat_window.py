"""
Tests for ChatWindow: the mention-aware input plus streaming transcript

Run with:
    pytest tests/test_chat_window.py -v
"""
import asyncio
import json
from unittest.mock import Mock

import httpx
import pytest

from models.chat import SenderType
from models.mention import EntityType, MentionCandidate
from models.user import CurrentUser
from services.chat_stream import ChatSendError, ChatStreamCancelled, ChatStreamClient, ChatStreamError
from services.chat_window import ChatWindow
from tests.fixtures.chat_fixtures import FakeSearchService, sample_messages


USER = CurrentUser(supporter_id="supporter-1", full_name="Dana Support")

PRINTER = MentionCandidate(entity_id="T1", entity_type=EntityType.TICKET, display_name="Printer issue")
PRINCE = MentionCandidate(entity_id="C3", entity_type=EntityType.CUSTOMER, display_name="Prince Ltd")


async def reply_body(*parts, error: Exception = None, hang_after: bool = False):
    for part in parts:
        yield part
    if error is not None:
        raise error
    if hang_after:
        await asyncio.sleep(10)


class Endpoint:
    """Mock chat endpoint recording the payloads it receives"""

    def __init__(self, status: int = 200, parts=(b"On ", b"it."), error: Exception = None, hang_after: bool = False):
        self.status = status
        self.parts = parts
        self.error = error
        self.hang_after = hang_after
        self.payloads = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        if self.status != 200:
            return httpx.Response(self.status, json={"detail": "could not store message"})
        return httpx.Response(
            200,
            headers={"X-User-Message-Id": "msg-user-1", "X-User-Message-Created-At": "2025-03-01T09:10:00+00:00"},
            content=reply_body(*self.parts, error=self.error, hang_after=self.hang_after),
        )


def make_window(endpoint: Endpoint = None, search_results=None, **callbacks) -> ChatWindow:
    db = Mock()
    db.get_session_messages.return_value = sample_messages()
    http = httpx.AsyncClient(transport=httpx.MockTransport(endpoint or Endpoint()))
    return ChatWindow(
        "session-1",
        USER,
        db=db,
        stream_client=ChatStreamClient(url="http://support.test/ai-chat", http_client=http),
        search_service=FakeSearchService({"pr": [PRINTER, PRINCE]} if search_results is None else search_results),
        debounce_seconds=0,
        **callbacks,
    )


async def type_into(window: ChatWindow, text: str):
    for char in text:
        display = window.display_text[:window.caret] + char + window.display_text[window.caret:]
        window.handle_input(display, window.caret + 1)
    await window.mentions.wait()


# ============================================================================
# Mention input
# ============================================================================


class TestMentionInput:
    """Typing '@' opens the dropdown and selection rewrites both forms"""

    def test_typing_at_opens_dropdown_with_results(self):
        async def scenario():
            window = make_window()
            await type_into(window, "ask @pr")
            return window

        window = asyncio.run(scenario())
        assert window.mentions.is_open is True
        assert window.mentions.query == "pr"
        assert [c.entity_id for c in window.mentions.candidates] == ["T1", "C3"]

    def test_keyboard_selection_inserts_mention(self):
        async def scenario():
            window = make_window()
            await type_into(window, "ask @pr")
            await window.handle_key("ArrowDown")
            await window.handle_key("ArrowUp")
            await window.handle_key("Enter")
            return window

        window = asyncio.run(scenario())
        assert window.display_text == "ask @Printer issue"
        assert window.storage_text == "ask @ticket:T1:Printer issue"
        assert window.mentions.is_open is False
        assert window.caret == len("ask @Printer issue")

    def test_tab_selects_highlighted_candidate(self):
        async def scenario():
            window = make_window()
            await type_into(window, "@pr")
            await window.handle_key("ArrowDown")
            await window.handle_key("Tab")
            return window

        window = asyncio.run(scenario())
        assert window.storage_text == "@customer:C3:Prince Ltd"

    def test_space_closes_dropdown(self):
        async def scenario():
            window = make_window()
            await type_into(window, "@pr ")
            return window

        window = asyncio.run(scenario())
        assert window.mentions.is_open is False
        assert window.mentions.candidates == []

    def test_escape_closes_dropdown(self):
        async def scenario():
            window = make_window()
            await type_into(window, "@pr")
            handled = await window.handle_key("Escape")
            return window, handled

        window, handled = asyncio.run(scenario())
        assert handled is True
        assert window.mentions.is_open is False
        assert window.display_text == "@pr"

    def test_enter_with_open_empty_dropdown_does_not_send(self):
        endpoint = Endpoint()

        async def scenario():
            window = make_window(endpoint, search_results={})
            await type_into(window, "@zz")
            await window.handle_key("Enter")
            return window

        window = asyncio.run(scenario())
        assert endpoint.payloads == []
        assert window.display_text == "@zz"


# ============================================================================
# Sending
# ============================================================================


class TestSend:
    """Sending stores the storage form and streams the reply"""

    def test_send_appends_user_message_then_streamed_reply(self):
        endpoint = Endpoint(parts=(b"Hel", b"lo, ", b"world"))
        tokens = []
        completed = []

        async def scenario():
            window = make_window(endpoint, on_token=tokens.append, on_complete=completed.append)
            await type_into(window, "who has @pr")
            window.select_mention(PRINTER)
            await type_into(window, "?")
            reply = await window.send()
            return window, reply

        window, reply = asyncio.run(scenario())

        payload = endpoint.payloads[0]
        assert payload["message"] == "who has @ticket:T1:Printer issue?"
        assert payload["sessionId"] == "session-1"
        assert payload["supporterId"] == "supporter-1"
        assert payload["metadata"]["mentions"]["ticket:T1"] == {
            "entityId": "T1", "entityType": "ticket", "displayName": "Printer issue"
        }

        user_message, ai_message = window.messages
        assert user_message.id == "msg-user-1"
        assert user_message.sender_type == SenderType.USER
        assert user_message.content == "who has @ticket:T1:Printer issue?"
        assert ai_message is reply
        assert ai_message.content == "Hello, world"
        assert ai_message.is_streaming is False

        assert tokens == ["Hel", "lo, ", "world"]
        assert completed == [reply]
        assert window.display_text == ""
        assert window.caret == 0

    def test_enter_sends_when_dropdown_closed(self):
        endpoint = Endpoint()

        async def scenario():
            window = make_window(endpoint)
            await type_into(window, "hello")
            await window.handle_key("Enter")
            return window

        window = asyncio.run(scenario())
        assert endpoint.payloads[0]["message"] == "hello"
        assert window.messages[-1].content == "On it."

    def test_send_failure_keeps_input_and_appends_nothing(self):
        errors = []

        async def scenario():
            window = make_window(Endpoint(status=500), on_error=errors.append)
            await type_into(window, "hello")
            with pytest.raises(ChatSendError):
                await window.send()
            return window

        window = asyncio.run(scenario())
        assert window.messages == []
        assert window.display_text == "hello"
        assert window.last_error == "could not store message"
        assert isinstance(errors[0], ChatSendError)
        assert window.can_send is True

    def test_stream_failure_keeps_partial_reply(self):
        errors = []
        endpoint = Endpoint(parts=(b"Looking",), error=httpx.ReadError("reset"))

        async def scenario():
            window = make_window(endpoint, on_error=errors.append)
            await type_into(window, "status?")
            with pytest.raises(ChatStreamError):
                await window.send()
            return window

        window = asyncio.run(scenario())
        ai_message = window.messages[-1]
        assert ai_message.content == "Looking"
        assert ai_message.is_streaming is False
        assert ai_message.error is not None
        assert len(errors) == 1
        assert window.is_streaming is False

    def test_raising_token_callback_does_not_leave_window_streaming(self):
        def on_token(chunk):
            raise RuntimeError("render failed")

        async def scenario():
            window = make_window(Endpoint(parts=(b"Hel", b"lo")), on_token=on_token)
            await type_into(window, "first")
            with pytest.raises(RuntimeError):
                await window.send()
            await type_into(window, "second")
            return window

        window = asyncio.run(scenario())
        placeholder = window.messages[-1]
        assert placeholder.is_streaming is False
        assert placeholder.error == "render failed"
        assert window.is_streaming is False
        assert window.can_send is True

    def test_cancel_mid_stream_keeps_partial_reply(self):
        errors = []
        holder = {}

        async def scenario():
            window = make_window(
                Endpoint(parts=(b"Checking",), hang_after=True),
                on_token=lambda chunk: holder["window"].cancel(),
                on_error=errors.append,
            )
            holder["window"] = window
            await type_into(window, "status?")
            with pytest.raises(ChatStreamCancelled):
                await window.send()
            return window

        window = asyncio.run(scenario())
        ai_message = window.messages[-1]
        assert ai_message.content == "Checking"
        assert ai_message.is_streaming is False
        assert isinstance(errors[0], ChatStreamCancelled)
        assert window.is_streaming is False

    def test_blank_input_is_not_sent(self):
        endpoint = Endpoint()

        async def scenario():
            window = make_window(endpoint)
            await type_into(window, "   ")
            return await window.send()

        assert asyncio.run(scenario()) is None
        assert endpoint.payloads == []

    def test_cannot_send_while_streaming(self):
        endpoint = Endpoint()

        async def scenario():
            window = make_window(endpoint)
            await type_into(window, "second question")
            window.transcript.begin_ai_message()
            return window, await window.send()

        window, result = asyncio.run(scenario())
        assert result is None
        assert window.can_send is False
        assert endpoint.payloads == []


# ============================================================================
# Transcript
# ============================================================================


def test_load_and_render_transcript():
    async def scenario():
        window = make_window()
        await window.load()
        return window

    window = asyncio.run(scenario())
    assert [m.id for m in window.messages] == ["msg-1", "msg-2", "msg-3"]
    assert window.rendered_messages()[0] == "Who owns **@Printer issue**?"
