"""Read receipt tracker."""

from __future__ import annotations

import asyncio
from typing import Any, Iterable

from loguru import logger

from chatsync.connection import EVENT_MESSAGE_READ
from chatsync.models import Message, MessageReadEvent, ReadReceipt, parse_payload
from chatsync.trackers.base import ConversationTracker
from chatsync.utils.helpers import join_names


def read_status_text(receipts: Iterable[ReadReceipt], exclude_user_id: str | None = None) -> str:
    """
    Describe who read a message, in receipt arrival order.

    "" for nobody, "Read by A", "Read by A and B", "Read by A and N others".
    """
    names = [r.user_name for r in receipts if not exclude_user_id or r.user_id != exclude_user_id]
    if not names:
        return ""
    return f"Read by {join_names(names)}"


def has_been_read_by(receipts: Iterable[ReadReceipt], user_id: str) -> bool:
    return any(r.user_id == user_id for r in receipts)


class ReadReceiptTracker(ConversationTracker):
    """Keeps at most one receipt per (message, reader); later receipts overwrite readAt."""

    name = "receipts"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._receipts: dict[str, dict[str, ReadReceipt]] = {}
        self._pending: set[asyncio.Task] = set()

    def _register(self) -> None:
        self._subscribe(EVENT_MESSAGE_READ, self.on_message_read)

    def _reset(self) -> None:
        self._receipts = {}
        for task in self._pending:
            task.cancel()
        self._pending = set()

    # ---- inbound -----------------------------------------------------------

    def on_message_read(self, payload: Any) -> bool:
        event = parse_payload(MessageReadEvent, payload, EVENT_MESSAGE_READ)
        if event is None:
            return False
        self._upsert(event.message_id, event.read_receipt)
        return True

    def initialize_from_messages(self, messages: Iterable[Message]) -> None:
        for message in messages:
            for receipt in message.read_by:
                self._upsert(message.id, receipt)

    def _upsert(self, message_id: str, receipt: ReadReceipt) -> None:
        # Overwriting an existing key keeps the reader's original position.
        self._receipts.setdefault(message_id, {})[receipt.user_id] = receipt

    # ---- views -------------------------------------------------------------

    def receipts_for(self, message_id: str) -> list[ReadReceipt]:
        return list(self._receipts.get(message_id, {}).values())

    def get_read_status_text(self, receipts: Iterable[ReadReceipt] = ()) -> str:
        """Read status text for *receipts*, leaving out this tracker's own user."""
        return read_status_text(receipts, exclude_user_id=self.user_id or None)

    def has_current_user_read(self, receipts: Iterable[ReadReceipt] = ()) -> bool:
        return bool(self.user_id) and has_been_read_by(receipts, self.user_id)

    has_been_read_by = staticmethod(has_been_read_by)

    # ---- outbound ----------------------------------------------------------

    async def mark_as_read(self, message_id: str) -> bool:
        if not self.can_emit() or not self.conversation_id:
            return False
        return await self.manager.mark_message_as_read(
            message_id, self.conversation_id, self.user_id, self.user_name,
        )

    async def mark_multiple_as_read(self, message_ids: Iterable[str]) -> int:
        if not self.can_emit():
            return 0
        sent = 0
        for message_id in message_ids:
            if await self.mark_as_read(message_id):
                sent += 1
        return sent

    def auto_mark_as_read(self, message_id: str, delay: float = 1.0) -> asyncio.Task | None:
        """Mark *message_id* read after *delay* seconds unless the tracker is released first."""
        if not self.can_emit():
            return None
        task = asyncio.create_task(self._mark_after(message_id, delay))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _mark_after(self, message_id: str, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))
        if not await self.mark_as_read(message_id):
            logger.debug("Auto mark-as-read dropped for {}", message_id)
