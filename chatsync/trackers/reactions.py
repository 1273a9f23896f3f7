"""Reaction aggregator: active reactions per message with grouped and summary views."""

from __future__ import annotations

from typing import Any, Iterable, NamedTuple

from loguru import logger

from chatsync.connection import EVENT_REACTION_ADDED, EVENT_REACTION_REMOVED
from chatsync.models import (
    Message,
    Reaction,
    ReactionAddedEvent,
    ReactionRemovedEvent,
    parse_payload,
)
from chatsync.trackers.base import ConversationTracker
from chatsync.utils.helpers import join_names


class ReactionSummary(NamedTuple):
    emoji: str
    count: int


def group_reactions(reactions: Iterable[Reaction]) -> dict[str, list[Reaction]]:
    """Group by emoji; keys keep the order in which each emoji first appears."""
    grouped: dict[str, list[Reaction]] = {}
    for reaction in reactions:
        grouped.setdefault(reaction.emoji, []).append(reaction)
    return grouped


def summarize_reactions(reactions: Iterable[Reaction]) -> list[ReactionSummary]:
    return [ReactionSummary(emoji, len(group)) for emoji, group in group_reactions(reactions).items()]


class ReactionAggregator(ConversationTracker):
    """
    Tracks the active reactions of every message in the bound conversation.

    Invariants:
    - a reaction id is applied at most once per message, even after it was
      replaced or removed;
    - each (message, user) pair has at most one active reaction. A new
      reaction from the same user replaces the previous one, whatever order
      the add/remove events arrive in.

    Reactions for messages the reconciler has not seen yet are kept; the
    event streams carry no causal ordering between kinds.
    """

    name = "reactions"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._reactions: dict[str, list[Reaction]] = {}
        self._by_user: dict[tuple[str, str], str] = {}
        self._seen: dict[str, set[str]] = {}

    def _register(self) -> None:
        self._subscribe(EVENT_REACTION_ADDED, self.on_reaction_added)
        self._subscribe(EVENT_REACTION_REMOVED, self.on_reaction_removed)

    def _reset(self) -> None:
        self._reactions = {}
        self._by_user = {}
        self._seen = {}

    # ---- inbound -----------------------------------------------------------

    def on_reaction_added(self, payload: Any) -> bool:
        event = parse_payload(ReactionAddedEvent, payload, EVENT_REACTION_ADDED)
        if event is None:
            return False
        return self._add(event.message_id, event.reaction)

    def on_reaction_removed(self, payload: Any) -> bool:
        event = parse_payload(ReactionRemovedEvent, payload, EVENT_REACTION_REMOVED)
        if event is None:
            return False
        return self._remove(event.message_id, event.reaction_id) is not None

    def initialize_reactions(self, message_id: str, reactions: Iterable[Reaction | dict[str, Any]]) -> None:
        """Seed reactions for a message (e.g. from history) through the idempotent add path."""
        for raw in reactions:
            reaction = parse_payload(Reaction, raw, "initial reaction")
            if reaction is not None:
                self._add(message_id, reaction)

    def initialize_from_messages(self, messages: Iterable[Message]) -> None:
        for message in messages:
            if message.reactions:
                self.initialize_reactions(message.id, message.reactions)

    def clear_all(self) -> None:
        self._reset()

    def _add(self, message_id: str, reaction: Reaction) -> bool:
        seen = self._seen.setdefault(message_id, set())
        if reaction.id in seen:
            logger.debug("Duplicate reaction {} on {}", reaction.id, message_id)
            return False
        seen.add(reaction.id)

        prior_id = self._by_user.get((message_id, reaction.user_id))
        if prior_id is not None:
            self._remove(message_id, prior_id)

        if reaction.message_id != message_id:
            reaction = reaction.model_copy(update={"message_id": message_id})
        self._reactions.setdefault(message_id, []).append(reaction)
        self._by_user[(message_id, reaction.user_id)] = reaction.id
        return True

    def _remove(self, message_id: str, reaction_id: str) -> Reaction | None:
        current = self._reactions.get(message_id)
        if not current:
            return None
        for index, reaction in enumerate(current):
            if reaction.id == reaction_id:
                break
        else:
            return None

        del current[index]
        key = (message_id, reaction.user_id)
        if self._by_user.get(key) == reaction_id:
            del self._by_user[key]
        if not current:
            del self._reactions[message_id]
        return reaction

    # ---- views -------------------------------------------------------------

    def get_message_reactions(self, message_id: str) -> list[Reaction]:
        return list(self._reactions.get(message_id, ()))

    def get_grouped_reactions(self, message_id: str) -> dict[str, list[Reaction]]:
        return group_reactions(self._reactions.get(message_id, ()))

    def get_reaction_summary(self, message_id: str) -> list[ReactionSummary]:
        return summarize_reactions(self._reactions.get(message_id, ()))

    def get_total_reaction_count(self, message_id: str) -> int:
        return len(self._reactions.get(message_id, ()))

    def get_user_reaction(self, message_id: str, user_id: str | None = None) -> Reaction | None:
        reaction_id = self._by_user.get((message_id, user_id or self.user_id))
        if reaction_id is None:
            return None
        return next((r for r in self._reactions.get(message_id, ()) if r.id == reaction_id), None)

    def get_user_reaction_emoji(self, message_id: str) -> str | None:
        reaction = self.get_user_reaction(message_id)
        return reaction.emoji if reaction else None

    def has_user_reacted(self, message_id: str, emoji: str) -> bool:
        return self.get_user_reaction_emoji(message_id) == emoji

    def has_user_reacted_with_any(self, message_id: str) -> bool:
        return self.get_user_reaction(message_id) is not None

    def get_reaction_tooltip(self, message_id: str, emoji: str) -> str:
        names = [r.user_name for r in self._reactions.get(message_id, ()) if r.emoji == emoji]
        if not names:
            return ""
        return f"{join_names(names)} reacted with {emoji}"

    # ---- outbound ----------------------------------------------------------

    async def add_reaction(self, message_id: str, emoji: str) -> bool:
        if not self.can_emit() or not self.conversation_id:
            logger.debug("Cannot add reaction: enabled={} connected={}", self.enabled, self.manager.is_connected())
            return False
        return await self.manager.add_reaction(
            message_id, self.conversation_id, self.user_id, self.user_name, emoji,
        )

    async def remove_reaction(self, message_id: str, reaction_id: str) -> bool:
        if not self.can_emit() or not self.conversation_id:
            return False
        return await self.manager.remove_reaction(message_id, self.conversation_id, self.user_id, reaction_id)

    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        """Remove the user's reaction if it is *emoji*, otherwise add *emoji* (server replaces)."""
        if not self.can_emit():
            return False
        existing = self.get_user_reaction(message_id)
        if existing is not None and existing.emoji == emoji:
            return await self.remove_reaction(message_id, existing.id)
        return await self.add_reaction(message_id, emoji)
