"""
Mention models for the chat input pipeline.

A mention is an inline reference to a support entity embedded in chat text.
Storage form: @type:id:displayName
Display form: @displayName
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EntityType(str, Enum):
    """Closed set of entities that can be mentioned in chat"""
    TICKET = "ticket"
    SUPPORTER = "supporter"
    CUSTOMER = "customer"
    ACCOUNT = "account"
    CATEGORY = "category"

    @classmethod
    def parse(cls, value: str) -> Optional["EntityType"]:
        """Return the matching member, or None for an unknown tag"""
        try:
            return cls(value)
        except ValueError:
            return None


class UnknownEntityTypeError(ValueError):
    """Raised when a remote payload carries an entity type outside EntityType"""

    def __init__(self, entity_type: str):
        super().__init__(f"Unknown entity type: {entity_type!r}")
        self.entity_type = entity_type


class MentionToken(BaseModel):
    """Structured mention embedded in message content"""
    entity_type: EntityType
    entity_id: str
    display_name: str

    @property
    def storage_form(self) -> str:
        return f"@{self.entity_type.value}:{self.entity_id}:{self.display_name}"

    @property
    def display_form(self) -> str:
        return f"@{self.display_name}"

    @property
    def key(self) -> str:
        """Stable key used in message metadata"""
        return f"{self.entity_type.value}:{self.entity_id}"

    def to_metadata(self) -> dict:
        return {
            "entityId": self.entity_id,
            "entityType": self.entity_type.value,
            "displayName": self.display_name,
        }

    @classmethod
    def from_metadata(cls, data: dict) -> "MentionToken":
        entity_type = EntityType.parse(data.get("entityType", ""))
        if entity_type is None:
            raise UnknownEntityTypeError(data.get("entityType", ""))
        return cls(
            entity_type=entity_type,
            entity_id=str(data["entityId"]),
            display_name=data["displayName"],
        )


class MentionCandidate(BaseModel):
    """Search result offered in the mention dropdown"""
    entity_id: str
    entity_type: EntityType
    display_name: str
    secondary_text: str = ""

    @classmethod
    def from_rpc_row(cls, row: dict) -> "MentionCandidate":
        """Decode a search_mentions RPC row, rejecting unknown entity types"""
        entity_type = EntityType.parse(row.get("entity_type") or "")
        if entity_type is None:
            raise UnknownEntityTypeError(row.get("entity_type"))
        return cls(
            entity_id=str(row["entity_id"]),
            entity_type=entity_type,
            display_name=row.get("display_name") or "",
            secondary_text=row.get("secondary_text") or "",
        )

    def to_token(self) -> MentionToken:
        return MentionToken(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            display_name=self.display_name,
        )


class MentionState(BaseModel):
    """Tokenizer output: whether the caret sits in an in-progress mention"""
    active: bool = False
    search_term: str = ""

    @classmethod
    def inactive(cls) -> "MentionState":
        return cls(active=False, search_term="")
