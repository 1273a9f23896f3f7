"""History pager: request-driven pagination over a conversation's message history."""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from loguru import logger

from chatsync.models import HistoryPage, Message

DEFAULT_PAGE_SIZE = 50


class HistorySource(Protocol):
    async def get_history_page(self, conversation_id: str, page: int = 1, limit: int = 50) -> HistoryPage: ...


class PagerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


class HistoryPager:
    """
    Paginates history for one bound conversation.

    ``is_loading`` is the only concurrency control: while a fetch is in
    flight, ``load_more`` and ``refresh`` do nothing. ``load_initial_messages``
    always proceeds and starts a new generation; a response belonging to an
    older generation is dropped without touching state, so a slow fetch for
    a previous conversation cannot overwrite the current one.

    A fetch that never resolves leaves ``is_loading`` set; there is no timeout
    at this layer beyond the HTTP client's own.
    """

    def __init__(self, source: HistorySource, page_size: int = DEFAULT_PAGE_SIZE):
        self.source = source
        self.page_size = page_size
        self.conversation_id: str | None = None
        self.messages: list[Message] = []
        self.is_loading = False
        self.error: str | None = None
        self.has_more = True
        self.current_page = 1
        self._generation = 0
        self._loaded = False

    @property
    def state(self) -> PagerState:
        if self.is_loading:
            return PagerState.LOADING
        if self.error is not None:
            return PagerState.ERRORED
        if self._loaded:
            return PagerState.LOADED
        return PagerState.IDLE

    async def load_initial_messages(self, conversation_id: str) -> bool:
        """Reset for *conversation_id* and fetch page 1, replacing any current messages."""
        self._generation += 1
        self.conversation_id = conversation_id
        self.messages = []
        self.current_page = 1
        self.has_more = True
        self.error = None
        self._loaded = False
        return await self._fetch(page=1, append=False)

    async def load_more(self) -> bool:
        """Fetch the next page and append it. No-op while loading, at the end, or unbound."""
        if self.is_loading or not self.has_more or not self.conversation_id:
            return False
        return await self._fetch(page=self.current_page + 1, append=True)

    async def refresh(self) -> bool:
        """Re-fetch page 1 and replace the message list."""
        if not self.conversation_id or self.is_loading:
            return False
        return await self._fetch(page=1, append=False)

    def reset(self) -> None:
        """Unbind and forget everything; any in-flight response will be dropped."""
        self._generation += 1
        self.conversation_id = None
        self.messages = []
        self.is_loading = False
        self.error = None
        self.has_more = True
        self.current_page = 1
        self._loaded = False

    async def _fetch(self, page: int, append: bool) -> bool:
        generation = self._generation
        conversation_id = self.conversation_id
        self.is_loading = True
        self.error = None

        result: HistoryPage | None = None
        error: str | None = None
        try:
            result = await self.source.get_history_page(conversation_id, page, self.page_size)
        except Exception as e:
            error = str(e) or "Unknown error"
        finally:
            # Runs on cancellation too.
            if generation == self._generation:
                self.is_loading = False

        if generation != self._generation:
            logger.debug("Dropping stale history page {} for {}", page, conversation_id)
            return False

        if error is not None:
            logger.error("Failed to load history for {} (page {}): {}", conversation_id, page, error)
            self.error = error
            return False

        self.messages = [*self.messages, *result.messages] if append else list(result.messages)
        self.has_more = result.has_more
        self.current_page = page
        self._loaded = True
        return True
