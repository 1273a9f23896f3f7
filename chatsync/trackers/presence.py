"""Presence tracker: online/offline state of the other participants."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable

from chatsync.connection import EVENT_CONNECT, EVENT_DISCONNECT, EVENT_PRESENCE_UPDATE
from chatsync.models import PresenceEntry, PresenceUpdateEvent, parse_payload
from chatsync.trackers.base import ConversationTracker
from chatsync.utils.helpers import as_utc, join_names, utc_now


def online_users_text(online: Iterable[PresenceEntry]) -> str:
    names = [entry.user_name for entry in online]
    if not names:
        return "No one else is online"
    if len(names) == 1:
        return f"{names[0]} is online"
    return f"{join_names(names)} are online"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count > 1 else ''} ago"


def presence_text(entry: PresenceEntry | None, now: datetime | None = None) -> str:
    """Short status for one user: "Online", "Just now", "5 minutes ago", "Offline"..."""
    if entry is None:
        return ""
    if entry.is_online:
        return "Online"
    if entry.last_seen is None:
        return "Offline"

    now = as_utc(now or utc_now())
    minutes = int((now - as_utc(entry.last_seen)).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return _plural(minutes, "minute")
    if minutes < 1440:
        return _plural(minutes // 60, "hour")
    return _plural(minutes // 1440, "day")


class PresenceTracker(ConversationTracker):
    """
    Latest presence per user, excluding the tracker's own user.

    Entries are upserted in place, so views iterate in first-seen order.
    The bound user is announced online on activation and on every
    reconnect.
    """

    name = "presence"

    def __init__(self, *args: Any, clock: Callable[[], datetime] = utc_now, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._clock = clock
        self._presence: dict[str, PresenceEntry] = {}
        self.is_current_user_online = False

    def _register(self) -> None:
        self._subscribe(EVENT_PRESENCE_UPDATE, self.on_presence_update)
        self._subscribe(EVENT_CONNECT, self.set_user_online)
        self._subscribe(EVENT_DISCONNECT, self._on_disconnect)

    def _reset(self) -> None:
        self._presence = {}
        self.is_current_user_online = False

    async def _on_activated(self) -> None:
        await self.set_user_online()

    def _on_disconnect(self) -> None:
        self.is_current_user_online = False

    # ---- inbound -----------------------------------------------------------

    def on_presence_update(self, payload: Any) -> bool:
        event = parse_payload(PresenceUpdateEvent, payload, EVENT_PRESENCE_UPDATE)
        if event is None or event.user_id == self.user_id:
            return False
        if not self._in_conversation(event.conversation_id):
            return False

        last_seen = event.last_seen
        if last_seen is None and not event.is_online:
            last_seen = self._clock()
        self._presence[event.user_id] = PresenceEntry(
            user_id=event.user_id, user_name=event.user_name,
            is_online=event.is_online, last_seen=last_seen,
        )
        return True

    # ---- views -------------------------------------------------------------

    @property
    def online_users(self) -> list[PresenceEntry]:
        return [e for e in self._presence.values() if e.is_online]

    @property
    def offline_users(self) -> list[PresenceEntry]:
        return [e for e in self._presence.values() if not e.is_online]

    def get_online_count(self) -> int:
        return sum(1 for e in self._presence.values() if e.is_online)

    def is_user_online(self, user_id: str) -> bool:
        entry = self._presence.get(user_id)
        return entry.is_online if entry else False

    def get_last_seen(self, user_id: str) -> datetime | None:
        entry = self._presence.get(user_id)
        return entry.last_seen if entry else None

    def get_presence_text(self, user_id: str) -> str:
        return presence_text(self._presence.get(user_id), self._clock())

    def get_online_users_text(self) -> str:
        return online_users_text(self.online_users)

    # ---- outbound ----------------------------------------------------------

    async def set_user_online(self) -> bool:
        if not self.can_emit() or not self.user_id:
            return False
        sent = await self.manager.set_user_online(self.user_id, self.user_name, self.conversation_id)
        if sent:
            self.is_current_user_online = True
        return sent
