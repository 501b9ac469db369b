from supabase import create_client, Client
from config import settings
from typing import List, Optional, Dict, Any
from models.chat import ChatMessage, ChatSession, SenderType, SessionStatus
import logging

logger = logging.getLogger(__name__)


class DatabaseService:
    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client or create_client(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY
        )

    # Chat Sessions
    def create_session(self, supporter_id: str, title: Optional[str] = None) -> ChatSession:
        """Create a new chat session owned by a supporter"""
        response = (
            self.client.table("ai_chat_sessions")
            .insert({"supporter_id": supporter_id, "title": title or "New Chat"})
            .execute()
        )
        return ChatSession(**response.data[0])

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        """Get session by ID"""
        response = (
            self.client.table("ai_chat_sessions")
            .select("*")
            .eq("id", session_id)
            .limit(1)
            .execute()
        )
        return ChatSession(**response.data[0]) if response.data else None

    def list_sessions(self, supporter_id: str, include_archived: bool = False) -> List[ChatSession]:
        """List a supporter's sessions, newest first. Deleted sessions are never listed."""
        query = (
            self.client.table("ai_chat_sessions")
            .select("*")
            .eq("supporter_id", supporter_id)
        )
        if include_archived:
            query = query.neq("status", SessionStatus.DELETED.value)
        else:
            query = query.eq("status", SessionStatus.ACTIVE.value)

        response = query.order("created_at", desc=True).execute()
        return [ChatSession(**session) for session in response.data]

    def update_session(
        self,
        session_id: str,
        supporter_id: str,
        title: Optional[str] = None,
        status: Optional[SessionStatus] = None,
    ) -> Optional[ChatSession]:
        """Rename a session or change its status. Scoped to the owning supporter."""
        updates: Dict[str, Any] = {}
        if title is not None:
            updates["title"] = title
        if status is not None:
            updates["status"] = SessionStatus(status).value

        if not updates:
            raise ValueError("No session updates provided")

        response = (
            self.client.table("ai_chat_sessions")
            .update(updates)
            .eq("id", session_id)
            .eq("supporter_id", supporter_id)
            .execute()
        )
        return ChatSession(**response.data[0]) if response.data else None

    # Chat Messages
    def create_message(
        self,
        session_id: str,
        sender_type: SenderType,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        """Append a message to a session. Messages are never updated afterwards."""
        message_data = {
            "chat_session_id": session_id,
            "sender_type": SenderType(sender_type).value,
            "content": content,
        }
        if metadata:
            message_data["metadata"] = metadata

        response = self.client.table("ai_chat_messages").insert(message_data).execute()
        return ChatMessage(**response.data[0])

    def get_session_messages(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        """Get messages for a session in creation order

        Args:
            session_id: UUID of the chat session
            limit: Only return the most recent `limit` messages (still oldest first)
        """
        query = (
            self.client.table("ai_chat_messages")
            .select("*")
            .eq("chat_session_id", session_id)
        )
        if limit:
            response = query.order("created_at", desc=True).limit(limit).execute()
            rows = list(reversed(response.data))
        else:
            rows = query.order("created_at", desc=False).execute().data

        return [ChatMessage(**self._normalize_message_row(row)) for row in rows]

    def _normalize_message_row(self, row: dict) -> dict:
        row = dict(row)
        if row.get("metadata") is None:
            row["metadata"] = {}
        if row.get("content") is None:
            row["content"] = ""
        return row

    # Mentions
    def search_mentions(self, search_query: str, max_results: int = 5) -> List[dict]:
        """Ranked multi-type entity search backing the mention dropdown"""
        response = self.client.rpc(
            "search_mentions",
            {"search_query": search_query, "max_results": max_results},
        ).execute()
        return response.data or []

    # Agent queries
    def execute_query(self, query: str, parameters: Optional[List[Any]] = None) -> Any:
        """Run a parameterised read query through the ai_execute_query RPC"""
        response = self.client.rpc(
            "ai_execute_query",
            {"query_text": query, "query_params": parameters or []},
        ).execute()
        return response.data

    # Tickets
    def get_ticket(self, ticket_id: str) -> Optional[dict]:
        """Get ticket id and title by ID"""
        response = (
            self.client.table("tickets")
            .select("id, title")
            .eq("id", ticket_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def category_exists(self, category_id: str) -> bool:
        response = self.client.table("categories").select("id").eq("id", category_id).limit(1).execute()
        return bool(response.data)

    def supporter_exists(self, supporter_id: str) -> bool:
        response = self.client.table("supporters").select("id").eq("id", supporter_id).limit(1).execute()
        return bool(response.data)

    def add_ticket_note(self, ticket_id: str, supporter_id: str, content: str) -> dict:
        """Add an internal note (visible to supporters only)"""
        response = (
            self.client.table("notes")
            .insert({"ticket_id": ticket_id, "supporter_id": supporter_id, "content": content})
            .execute()
        )
        return response.data[0]

    def add_ticket_message(self, ticket_id: str, supporter_id: str, content: str) -> dict:
        """Add a customer-visible message to a ticket"""
        response = (
            self.client.table("messages")
            .insert({
                "ticket_id": ticket_id,
                "sender_type": "supporter",
                "sender_id": supporter_id,
                "content": content,
            })
            .execute()
        )
        return response.data[0]

    def update_ticket(self, ticket_id: str, updates: Dict[str, Any]) -> Optional[dict]:
        """Update ticket category, assignment or status"""
        updates = {key: value for key, value in updates.items() if value is not None}
        response = self.client.table("tickets").update(updates).eq("id", ticket_id).execute()
        return response.data[0] if response.data else None
