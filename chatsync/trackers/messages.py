"""Message stream reconciler: deduplicated, arrival-ordered messages for one conversation."""

from __future__ import annotations

from typing import Any, Iterable

from loguru import logger

from chatsync.connection import EVENT_CONNECT, EVENT_MESSAGE_DELETED, EVENT_NEW_MESSAGE
from chatsync.models import Message, MessageDeletedEvent, parse_payload
from chatsync.trackers.base import ConversationTracker


class MessageStreamReconciler(ConversationTracker):
    """
    Merges server-pushed messages into one list keyed by message id.

    Order is first-seen order; a message id seen twice is ignored, and so is
    one that was deleted. Local
    sends are not appended: the server echo arriving as ``new_message`` is
    the only way a message enters the list.
    """

    name = "messages"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._messages: dict[str, Message] = {}
        self._deleted: set[str] = set()

    # ---- views -------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return list(self._messages.values())

    @property
    def message_ids(self) -> list[str]:
        return list(self._messages)

    def get(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages

    # ---- lifecycle ---------------------------------------------------------

    def _register(self) -> None:
        self._subscribe(EVENT_NEW_MESSAGE, self.on_new_message)
        self._subscribe(EVENT_MESSAGE_DELETED, self.on_message_deleted)
        self._subscribe(EVENT_CONNECT, self._rejoin)

    def _reset(self) -> None:
        self._messages = {}
        self._deleted = set()

    async def _on_activated(self) -> None:
        await self.manager.join_conversation(self.conversation_id)

    async def _rejoin(self) -> None:
        # Rooms are per socket, so a reconnect has to join again.
        await self.manager.join_conversation(self.conversation_id)

    # ---- inbound -----------------------------------------------------------

    def on_new_message(self, payload: Any) -> bool:
        """Append a pushed message. Returns False when it was dropped."""
        message = parse_payload(Message, payload, EVENT_NEW_MESSAGE)
        if message is None:
            return False
        if not self._in_conversation(message.conversation_id):
            return False
        return self._append(message)

    def on_message_deleted(self, payload: Any) -> bool:
        event = parse_payload(MessageDeletedEvent, payload, EVENT_MESSAGE_DELETED)
        if event is None or not self._in_conversation(event.conversation_id):
            return False
        self._deleted.add(event.message_id)
        return self._messages.pop(event.message_id, None) is not None

    def set_initial_messages(self, messages: Iterable[Message | dict[str, Any]]) -> int:
        """Seed the list (e.g. from history). An empty seed leaves the list alone."""
        added = 0
        for raw in messages:
            message = parse_payload(Message, raw, "initial message")
            if message is not None and self._append(message):
                added += 1
        return added

    def clear(self) -> None:
        self._messages = {}

    def _append(self, message: Message) -> bool:
        if message.id in self._messages:
            logger.debug("Duplicate message {} in {}", message.id, self.conversation_id)
            return False
        if message.id in self._deleted:
            logger.debug("Ignoring deleted message {} in {}", message.id, self.conversation_id)
            return False
        self._messages[message.id] = message
        return True

    # ---- outbound ----------------------------------------------------------

    async def send_message(
        self,
        text: str,
        sender_id: str | None = None,
        sender_name: str | None = None,
        *,
        reply_to_id: str | None = None,
        thread_id: str | None = None,
    ) -> bool:
        """Emit a message; it shows up in :attr:`messages` once the server echoes it."""
        if not self.can_emit() or not self.conversation_id:
            logger.debug("Not sending message: enabled={} connected={}", self.enabled, self.manager.is_connected())
            return False
        return await self.manager.send_message(
            text, sender_id or self.user_id, sender_name or self.user_name, self.conversation_id,
            reply_to_id=reply_to_id, thread_id=thread_id,
        )

    async def delete_message(self, message_id: str) -> bool:
        if not self.can_emit() or not self.conversation_id:
            return False
        return await self.manager.delete_message(message_id, self.conversation_id, self.user_id)
