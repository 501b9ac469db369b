"""
Tools exposed to the support agent.

Each tool declares an Anthropic tool definition and runs against Supabase
through DatabaseService. Failures are returned to the model as text so it can
recover or ask for clarification.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
import json
import logging

from models.chat import SessionStatus
from services.database import DatabaseService

logger = logging.getLogger(__name__)


class SupportTool(ABC):
    name: str = ""
    description: str = ""
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}}
    error_prefix: str = "Error"

    def definition(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def run(self, tool_input: Dict[str, Any]) -> str:
        try:
            return self._call(tool_input or {})
        except Exception as e:
            logger.error(f"Tool {self.name} failed: {e}", exc_info=True)
            return f"{self.error_prefix}: {e}"

    @abstractmethod
    def _call(self, tool_input: Dict[str, Any]) -> str:
        """Run the tool. Exceptions become error text for the model."""


class DatabaseQueryTool(SupportTool):
    name = "supabase_db"
    description = """Use this tool to query the database. Always use parameterized queries for safety.
Available tables:
- tickets (id, title, category_id, created_by_user_id, assigned_to_supporter_id, ticket_status, priority)
- supporters (id, email, full_name)
- users (id, email, full_name, company_id)
- companies (id, company_name)
- categories (id, category_name, description)
- messages (id, ticket_id, sender_type, sender_id, content)"""
    input_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "SQL query using $1, $2... placeholders"},
            "parameters": {"type": "array", "items": {}, "description": "Values for the placeholders"},
        },
        "required": ["query"],
    }
    error_prefix = "Error executing query"

    def __init__(self, db: DatabaseService):
        self.db = db

    def _call(self, tool_input: Dict[str, Any]) -> str:
        query = tool_input.get("query")
        if not query:
            raise ValueError("Query is required")

        data = self.db.execute_query(query, tool_input.get("parameters") or [])
        return json.dumps(data, default=str)


class ChatSessionTool(SupportTool):
    name = "chat_session"
    description = """Manage chat sessions. Available actions:
- create: Create a new chat session
- update: Update a chat session's title or status (active, archived, deleted)
- get_history: Get the chat history for a session"""
    input_schema = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["create", "update", "get_history"]},
            "session_id": {"type": "string"},
            "title": {"type": "string"},
            "status": {"type": "string", "enum": [status.value for status in SessionStatus]},
        },
        "required": ["action"],
    }
    error_prefix = "Error managing chat session"

    def __init__(self, db: DatabaseService, supporter_id: str):
        self.db = db
        self.supporter_id = supporter_id

    def _call(self, tool_input: Dict[str, Any]) -> str:
        action = tool_input.get("action")
        session_id = tool_input.get("session_id")

        if action == "create":
            session = self.db.create_session(self.supporter_id, tool_input.get("title"))
            return session.model_dump_json()

        if action == "update":
            if not session_id:
                raise ValueError("session_id required for update")
            session = self.db.update_session(
                session_id,
                self.supporter_id,
                title=tool_input.get("title"),
                status=tool_input.get("status"),
            )
            if session is None:
                raise ValueError(f"Session {session_id} not found")
            return session.model_dump_json()

        if action == "get_history":
            if not session_id:
                raise ValueError("session_id required for get_history")
            messages = self.db.get_session_messages(session_id)
            return json.dumps([message.model_dump(mode="json") for message in messages])

        raise ValueError(f"Unknown action: {action}")


class TicketTool(SupportTool):
    name = "ticket_operations"
    description = """Manage tickets, notes, and messages. Available actions:
- add_note: Add an internal note to a ticket (only visible to supporters)
- add_message: Add a message to a ticket (visible to customer)
- update_ticket: Update ticket properties (category, assignment, status)

For updating tickets, you can specify:
- category_id: The new category ID
- assigned_to_supporter_id: The ID of the supporter to assign to
- status: new, in_progress, requires_response, or closed

Always verify the ticket exists before performing operations.
Ask for clarification if any required information is missing."""
    input_schema = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["add_note", "add_message", "update_ticket"]},
            "ticket_id": {"type": "string"},
            "content": {"type": "string"},
            "category_id": {"type": "string"},
            "assigned_to_supporter_id": {"type": "string"},
            "status": {"type": "string", "enum": ["new", "in_progress", "requires_response", "closed"]},
        },
        "required": ["action", "ticket_id"],
    }
    error_prefix = "Error performing ticket operation"

    def __init__(self, db: DatabaseService, supporter_id: str):
        self.db = db
        self.supporter_id = supporter_id

    def _call(self, tool_input: Dict[str, Any]) -> str:
        action = tool_input.get("action")
        ticket_id = str(tool_input.get("ticket_id") or "")

        ticket = self.db.get_ticket(ticket_id) if ticket_id else None
        if not ticket:
            return f"Error: Ticket #{ticket_id} not found. Please verify the ticket ID."

        if action == "add_note":
            if not tool_input.get("content"):
                return "Error: Note content is required. Please provide the content for the note."
            self.db.add_ticket_note(ticket_id, self.supporter_id, tool_input["content"])
            return f"Successfully added note to ticket #{ticket_id}"

        if action == "add_message":
            if not tool_input.get("content"):
                return "Error: Message content is required. Please provide the content for the message."
            self.db.add_ticket_message(ticket_id, self.supporter_id, tool_input["content"])
            return f"Successfully added message to ticket #{ticket_id}"

        if action == "update_ticket":
            return self._update_ticket(ticket_id, tool_input)

        return f"Error: Unknown action {action}"

    def _update_ticket(self, ticket_id: str, tool_input: Dict[str, Any]) -> str:
        category_id = tool_input.get("category_id")
        supporter_id = tool_input.get("assigned_to_supporter_id")
        status = tool_input.get("status")

        if not category_id and not supporter_id and not status:
            return (
                "Error: No update parameters provided. Please specify what you want to update "
                "(category, assignment, or status)."
            )

        if category_id and not self.db.category_exists(category_id):
            return f"Error: Category {category_id} not found"

        if supporter_id and not self.db.supporter_exists(supporter_id):
            return f"Error: Supporter {supporter_id} not found"

        self.db.update_ticket(ticket_id, {
            "category_id": category_id,
            "assigned_to_supporter_id": supporter_id,
            "ticket_status": status,
        })

        changes = []
        if category_id:
            changes.append("category")
        if supporter_id:
            changes.append("assignment")
        if status:
            changes.append("status")

        return f"Successfully updated ticket #{ticket_id} (changed: {', '.join(changes)})"


def build_tools(db: DatabaseService, supporter_id: str) -> List[SupportTool]:
    """Tools available to the agent for one supporter"""
    return [
        DatabaseQueryTool(db),
        ChatSessionTool(db, supporter_id),
        TicketTool(db, supporter_id),
    ]
