"""Wire models for conversation events and history pages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

T = TypeVar("T", bound="WireModel")


class WireModel(BaseModel):
    """Base model accepting both camelCase (wire) and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class ReadReceipt(WireModel):
    user_id: str
    user_name: str = ""
    read_at: datetime | None = None


class Reaction(WireModel):
    id: str
    user_id: str
    user_name: str = ""
    emoji: str
    message_id: str = ""
    timestamp: datetime | None = None


class Message(WireModel):
    id: str
    conversation_id: str = ""
    sender_id: str = ""
    sender_name: str = ""
    text: str = ""
    timestamp: datetime | None = None
    type: str | None = None
    reply_to_id: str | None = None
    thread_id: str | None = None
    read_by: list[ReadReceipt] = Field(default_factory=list)
    reactions: list[Reaction] = Field(default_factory=list)


class PresenceEntry(WireModel):
    user_id: str
    user_name: str = ""
    is_online: bool
    last_seen: datetime | None = None


class Pagination(WireModel):
    page: int = 1
    limit: int = 50
    has_more: bool = False


class HistoryPage(WireModel):
    """One page of conversation history as returned by the REST endpoint."""
    messages: list[Message] = Field(default_factory=list)
    page: int = 1
    limit: int = 50
    has_more: bool = False


# ---------------------------------------------------------------------------
# Inbound event payloads
# ---------------------------------------------------------------------------

class MessageReadEvent(WireModel):
    message_id: str
    read_receipt: ReadReceipt


class MessageDeletedEvent(WireModel):
    message_id: str
    conversation_id: str | None = None


class ReactionAddedEvent(WireModel):
    message_id: str
    reaction: Reaction


class ReactionRemovedEvent(WireModel):
    message_id: str
    reaction_id: str
    user_id: str = ""


class PresenceUpdateEvent(PresenceEntry):
    conversation_id: str | None = None


class TypingEvent(WireModel):
    user_id: str
    user_name: str = ""
    conversation_id: str | None = None


def parse_payload(model: type[T], payload: Any, event: str = "") -> T | None:
    """Validate an inbound payload, returning None (and logging) when malformed."""
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, dict):
        logger.warning("Dropping {} payload of type {}", event or model.__name__, type(payload).__name__)
        return None
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning("Dropping malformed {} payload: {}", event or model.__name__, e.errors(include_url=False))
        return None
