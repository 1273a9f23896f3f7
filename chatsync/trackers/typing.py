"""Typing indicator: who else is typing, and our own start/stop signals."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from chatsync.connection import EVENT_USER_STOPPED_TYPING, EVENT_USER_TYPING
from chatsync.models import TypingEvent, parse_payload
from chatsync.trackers.base import ConversationTracker
from chatsync.utils.helpers import join_names

DEFAULT_IDLE_TIMEOUT_S = 1.0
DEFAULT_EXPIRE_AFTER_S = 3.0


def typing_text(names: list[str]) -> str:
    if not names:
        return ""
    verb = "is" if len(names) == 1 else "are"
    return f"{join_names(names)} {verb} typing..."


class TypingIndicator(ConversationTracker):
    """
    Remote typers are kept most-recent-last and expire after ``expire_after_s``
    without a fresh ``user_typing`` event; expiry is evaluated when read.

    Locally, :meth:`start_typing` emits ``typing_start`` once and (re)arms an
    idle timer that emits ``typing_stop`` after ``idle_timeout_s``.
    """

    name = "typing"

    def __init__(
        self,
        *args: Any,
        idle_timeout_s: float = DEFAULT_IDLE_TIMEOUT_S,
        expire_after_s: float = DEFAULT_EXPIRE_AFTER_S,
        clock: Callable[[], float] = time.monotonic,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.idle_timeout_s = idle_timeout_s
        self.expire_after_s = expire_after_s
        self._clock = clock
        self._typers: dict[str, tuple[str, float]] = {}
        self._is_typing = False
        self._idle_task: asyncio.Task | None = None

    def _register(self) -> None:
        self._subscribe(EVENT_USER_TYPING, self.on_user_typing)
        self._subscribe(EVENT_USER_STOPPED_TYPING, self.on_user_stopped_typing)

    def _reset(self) -> None:
        self._typers = {}
        self._is_typing = False
        if self._idle_task:
            self._idle_task.cancel()
            self._idle_task = None

    # ---- inbound -----------------------------------------------------------

    def on_user_typing(self, payload: Any) -> bool:
        event = parse_payload(TypingEvent, payload, EVENT_USER_TYPING)
        if event is None or event.user_id == self.user_id:
            return False
        if not self._in_conversation(event.conversation_id):
            return False
        self._typers.pop(event.user_id, None)
        self._typers[event.user_id] = (event.user_name, self._clock())
        return True

    def on_user_stopped_typing(self, payload: Any) -> bool:
        event = parse_payload(TypingEvent, payload, EVENT_USER_STOPPED_TYPING)
        if event is None or not self._in_conversation(event.conversation_id):
            return False
        return self._typers.pop(event.user_id, None) is not None

    # ---- views -------------------------------------------------------------

    @property
    def typing_users(self) -> list[str]:
        cutoff = self._clock() - self.expire_after_s
        self._typers = {uid: seen for uid, seen in self._typers.items() if seen[1] > cutoff}
        return [name for name, _ in self._typers.values()]

    @property
    def is_anyone_typing(self) -> bool:
        return bool(self.typing_users)

    @property
    def is_typing(self) -> bool:
        return self._is_typing

    def get_typing_text(self) -> str:
        return typing_text(self.typing_users)

    # ---- outbound ----------------------------------------------------------

    async def start_typing(self) -> bool:
        if not self.can_emit() or not self.conversation_id:
            return False
        if not self._is_typing:
            if not await self.manager.start_typing(self.conversation_id, self.user_id, self.user_name):
                return False
            self._is_typing = True

        if self._idle_task:
            self._idle_task.cancel()
        self._idle_task = asyncio.create_task(self._stop_after_idle())
        return True

    async def stop_typing(self) -> bool:
        current = asyncio.current_task()
        if self._idle_task and self._idle_task is not current:
            self._idle_task.cancel()
        self._idle_task = None

        if not self._is_typing:
            return False
        self._is_typing = False
        if not self.can_emit() or not self.conversation_id:
            return False
        return await self.manager.stop_typing(self.conversation_id, self.user_id)

    async def _stop_after_idle(self) -> None:
        await asyncio.sleep(max(0.0, self.idle_timeout_s))
        await self.stop_typing()
