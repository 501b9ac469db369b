"""
Test fixtures for the chat pipeline
"""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional

from models.chat import ChatMessage, ChatSession, SenderType
from services.mention_search import MentionSearchResult


BASE_TIME = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def sample_session_row(session_id: str = "session-1", supporter_id: str = "supporter-1") -> dict:
    return {
        "id": session_id,
        "supporter_id": supporter_id,
        "title": "Printer escalations",
        "status": "active",
        "created_at": BASE_TIME.isoformat(),
    }


def sample_session(session_id: str = "session-1", supporter_id: str = "supporter-1") -> ChatSession:
    return ChatSession(**sample_session_row(session_id, supporter_id))


def sample_message_rows() -> List[dict]:
    """Three messages at t1 < t2 < t3, returned out of order"""
    return [
        {
            "id": "msg-3",
            "chat_session_id": "session-1",
            "sender_type": "llm",
            "content": "Ticket 42 is assigned to Dana.",
            "created_at": (BASE_TIME + timedelta(minutes=2)).isoformat(),
            "metadata": {"steps": []},
        },
        {
            "id": "msg-1",
            "chat_session_id": "session-1",
            "sender_type": "user",
            "content": "Who owns @ticket:42:Printer issue?",
            "created_at": BASE_TIME.isoformat(),
            "metadata": {
                "mentions": {
                    "ticket:42": {"entityId": "42", "entityType": "ticket", "displayName": "Printer issue"}
                }
            },
        },
        {
            "id": "msg-2",
            "chat_session_id": "session-1",
            "sender_type": "user",
            "content": "And the customer?",
            "created_at": (BASE_TIME + timedelta(minutes=1)).isoformat(),
            "metadata": None,
        },
    ]


def sample_messages() -> List[ChatMessage]:
    messages = []
    for row in sample_message_rows():
        row = dict(row)
        row["metadata"] = row["metadata"] or {}
        messages.append(ChatMessage(**row))
    return messages


def persisted_message(
    content: str,
    sender_type: SenderType = SenderType.USER,
    message_id: str = "msg-new",
    metadata: Optional[dict] = None,
) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        chat_session_id="session-1",
        sender_type=sender_type,
        content=content,
        created_at=BASE_TIME + timedelta(minutes=5),
        metadata=metadata or {},
    )


def sample_search_rows() -> List[dict]:
    return [
        {
            "entity_id": "T1",
            "entity_type": "ticket",
            "display_name": "Printer issue",
            "secondary_text": "Open - High priority",
        },
        {
            "entity_id": "S7",
            "entity_type": "supporter",
            "display_name": "Priya",
            "secondary_text": "priya@example.com",
        },
    ]


class FakeSearchService:
    """Mention search whose results are released by the test"""

    def __init__(self, results: Dict[str, list], gated: Optional[set] = None):
        self.results = results
        self.gates: Dict[str, asyncio.Event] = {query: asyncio.Event() for query in (gated or set())}
        self.calls: List[str] = []

    def release(self, query: str):
        self.gates[query].set()

    async def search(self, query: str):
        self.calls.append(query)
        if query in self.gates:
            await self.gates[query].wait()
        return MentionSearchResult(query=query, candidates=self.results.get(query, []))


class FakeAnthropicStream:
    """Stands in for the context manager returned by client.messages.stream"""

    def __init__(self, tokens: List[str], content: Optional[list] = None, stop_reason: str = "end_turn"):
        self.text_stream = iter(tokens)
        blocks = content if content is not None else [SimpleNamespace(type="text", text="".join(tokens))]
        self.final_message = SimpleNamespace(content=blocks, stop_reason=stop_reason)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def get_final_message(self):
        return self.final_message


def tool_use_block(name: str, tool_input: dict, block_id: str = "toolu_1"):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=tool_input)
