"""Base tracker interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from chatsync.connection import ConnectionManager, Handler, Subscription


class ConversationTracker(ABC):
    """
    Abstract base class for per-conversation trackers.

    A tracker is bound to one conversation at a time. Activation registers
    its listeners with the connection manager; deactivation disposes every
    one of them and discards the tracker's state, so nothing leaks across
    a conversation switch.
    """

    name: str = "base"

    def __init__(
        self,
        manager: ConnectionManager,
        conversation_id: str | None = None,
        *,
        user_id: str = "",
        user_name: str = "",
        enabled: bool = True,
    ):
        self.manager = manager
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.user_name = user_name
        self.enabled = enabled
        self._subscriptions: list[Subscription] = []
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def can_emit(self) -> bool:
        """Outbound actions are sent only when enabled and connected."""
        return self.enabled and self.manager.is_connected()

    async def activate(self, conversation_id: str | None = None) -> bool:
        """
        Bind to a conversation and start listening.

        Args:
            conversation_id: Conversation to bind; keeps the current one if omitted.

        Returns:
            True if the tracker is now active.
        """
        if conversation_id is not None and conversation_id != self.conversation_id:
            self.deactivate()
            self.conversation_id = conversation_id
        if not self.enabled:
            logger.debug("{} tracker disabled, not activating", self.name)
            return False
        if not self.conversation_id:
            logger.warning("{} tracker has no conversation to activate", self.name)
            return False
        if self._active:
            return True

        self._reset()
        self._register()
        self._active = True
        await self._on_activated()
        return True

    def deactivate(self) -> None:
        """Dispose every listener registered by this tracker and discard its state."""
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions.clear()
        if self._active:
            logger.debug("{} tracker released {}", self.name, self.conversation_id)
        self._active = False
        self._reset()

    async def switch_conversation(self, conversation_id: str) -> bool:
        self.deactivate()
        self.conversation_id = conversation_id
        return await self.activate()

    async def __aenter__(self) -> "ConversationTracker":
        await self.activate()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.deactivate()

    def _subscribe(self, event: str, handler: Handler) -> None:
        self._subscriptions.append(self.manager.on(event, handler))

    def _in_conversation(self, conversation_id: str | None) -> bool:
        """Payloads without a conversation id are assumed to be scoped by the server."""
        return not conversation_id or conversation_id == self.conversation_id

    @abstractmethod
    def _register(self) -> None:
        """Subscribe to the events this tracker consumes."""
        pass

    @abstractmethod
    def _reset(self) -> None:
        """Drop all per-conversation state."""
        pass

    async def _on_activated(self) -> None:
        """Hook run after listeners are registered."""
        return None
