"""Chat session: every tracker plus the history pager, switched as one unit."""

from __future__ import annotations

from typing import Any

from loguru import logger

from chatsync.api import ChatApi
from chatsync.config.schema import Config
from chatsync.connection import ConnectionManager
from chatsync.history import HistoryPager, HistorySource
from chatsync.models import Message
from chatsync.trackers import (
    ConversationTracker,
    MessageStreamReconciler,
    PresenceTracker,
    ReactionAggregator,
    ReadReceiptTracker,
    TypingIndicator,
)


class ChatSession:
    """
    Binds one user to one conversation at a time.

    ``open()`` moves every tracker to the new conversation (releasing all
    listeners of the previous one first) and loads the first history page,
    which also seeds the live message list, reactions and read receipts.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        history_source: HistorySource,
        *,
        user_id: str,
        user_name: str,
        enabled: bool = True,
        page_size: int = 50,
        typing_idle_timeout_s: float = 1.0,
        typing_expire_after_s: float = 3.0,
    ):
        self.manager = manager
        identity: dict[str, Any] = {"user_id": user_id, "user_name": user_name, "enabled": enabled}
        self.messages = MessageStreamReconciler(manager, **identity)
        self.reactions = ReactionAggregator(manager, **identity)
        self.receipts = ReadReceiptTracker(manager, **identity)
        self.presence = PresenceTracker(manager, **identity)
        self.typing = TypingIndicator(
            manager, idle_timeout_s=typing_idle_timeout_s,
            expire_after_s=typing_expire_after_s, **identity,
        )
        self.history = HistoryPager(history_source, page_size=page_size)
        self._conversation_id: str | None = None

    @classmethod
    def from_config(
        cls, config: Config, manager: ConnectionManager | None = None, api: ChatApi | None = None,
    ) -> "ChatSession":
        return cls(
            manager or ConnectionManager(config.server),
            api or ChatApi(config.server),
            user_id=config.identity.user_id,
            user_name=config.identity.user_name,
            page_size=config.history.page_size,
            typing_idle_timeout_s=config.typing.idle_timeout_s,
            typing_expire_after_s=config.typing.expire_after_s,
        )

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def trackers(self) -> tuple[ConversationTracker, ...]:
        return (self.messages, self.reactions, self.receipts, self.presence, self.typing)

    async def open(self, conversation_id: str, *, load_history: bool = True) -> bool:
        """Switch to *conversation_id*. Returns False if the initial history load failed."""
        self._conversation_id = conversation_id
        for tracker in self.trackers:
            await tracker.switch_conversation(conversation_id)
        logger.info("Opened conversation {}", conversation_id)

        if not load_history:
            return True
        if not await self.history.load_initial_messages(conversation_id):
            return False
        # A newer open() may have run while the history request was in flight.
        if self.history.conversation_id == conversation_id:
            self._seed(self.history.messages)
        return True

    async def load_more(self) -> bool:
        before = len(self.history.messages)
        if not await self.history.load_more():
            return False
        older = self.history.messages[before:]
        self.reactions.initialize_from_messages(older)
        self.receipts.initialize_from_messages(older)
        return True

    def close(self) -> None:
        for tracker in self.trackers:
            tracker.deactivate()
        self.history.reset()
        self._conversation_id = None

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    def _seed(self, messages: list[Message]) -> None:
        self.messages.set_initial_messages(messages)
        self.reactions.initialize_from_messages(messages)
        self.receipts.initialize_from_messages(messages)
