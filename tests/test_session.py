from unittest.mock import AsyncMock

import pytest

from chatsync.config.schema import Config
from chatsync.connection import (
    EMIT_JOIN_CONVERSATION,
    EMIT_USER_ONLINE,
    EVENT_MESSAGE_READ,
    EVENT_NEW_MESSAGE,
    EVENT_REACTION_ADDED,
)
from chatsync.models import HistoryPage, Message, Reaction, ReadReceipt
from chatsync.session import ChatSession
from tests.conftest import emitted


def seeded_message(message_id: str) -> Message:
    return Message(
        id=message_id, conversation_id="c1", sender_name="Bob", text="old",
        read_by=[ReadReceipt(user_id="u2", user_name="Bob")],
        reactions=[Reaction(id=f"r-{message_id}", user_id="u2", user_name="Bob", emoji="👍")],
    )


@pytest.fixture
def source() -> AsyncMock:
    source = AsyncMock()
    source.get_history_page = AsyncMock(return_value=HistoryPage(
        messages=[seeded_message("m1"), seeded_message("m2")], has_more=True,
    ))
    return source


@pytest.fixture
def session(manager, source) -> ChatSession:
    return ChatSession(manager, source, user_id="u1", user_name="Ann", page_size=2)


class TestChatSession:
    @pytest.mark.asyncio
    async def test_open_activates_trackers_and_seeds(self, client, manager, session) -> None:
        """Opening a conversation activates every tracker and seeds it from page 1."""
        assert await session.open("c1") is True

        assert session.conversation_id == "c1"
        assert all(t.is_active for t in session.trackers)
        assert emitted(client, EMIT_JOIN_CONVERSATION) == ["c1"]
        assert emitted(client, EMIT_USER_ONLINE)[0]["conversationId"] == "c1"

        assert session.messages.message_ids == ["m1", "m2"]
        assert session.reactions.get_reaction_summary("m1") == [("👍", 1)]
        assert session.receipts.get_read_status_text(session.receipts.receipts_for("m2")) == "Read by Bob"

    @pytest.mark.asyncio
    async def test_live_events_after_open(self, manager, session) -> None:
        await session.open("c1")

        await manager._dispatch(EVENT_NEW_MESSAGE, {"id": "m2", "conversationId": "c1"})
        await manager._dispatch(EVENT_NEW_MESSAGE, {"id": "m3", "conversationId": "c1"})

        assert session.messages.message_ids == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_load_more_seeds_reactions_and_receipts_only(self, session, source) -> None:
        """Older pages feed reactions and receipts but not the live message list."""
        await session.open("c1")
        source.get_history_page.return_value = HistoryPage(messages=[seeded_message("m0")], page=2)

        assert await session.load_more() is True

        assert session.history.current_page == 2
        assert session.reactions.get_total_reaction_count("m0") == 1
        assert len(session.receipts.receipts_for("m0")) == 1
        assert "m0" not in session.messages

    @pytest.mark.asyncio
    async def test_switch_releases_previous_listeners(self, manager, session) -> None:
        """Reopening on another conversation does not accumulate listeners."""
        await session.open("c1")
        listeners = manager.listener_count()

        await session.open("c2")

        assert manager.listener_count() == listeners
        assert manager.listener_count(EVENT_NEW_MESSAGE) == 1
        assert session.messages.conversation_id == "c2"

    @pytest.mark.asyncio
    async def test_failed_history_keeps_trackers_live(self, session, source) -> None:
        """A history failure is reported but live tracking still works."""
        source.get_history_page.side_effect = RuntimeError("backend down")

        assert await session.open("c1") is False

        assert session.history.error == "backend down"
        assert session.messages.is_active is True
        assert len(session.messages) == 0

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, manager, session) -> None:
        """Leaving the session context removes every listener and unbinds the pager."""
        async with session:
            await session.open("c1")
            assert manager.listener_count() > 0

        assert manager.listener_count() == 0
        assert manager.listener_count(EVENT_REACTION_ADDED) == 0
        assert manager.listener_count(EVENT_MESSAGE_READ) == 0
        assert session.conversation_id is None
        assert session.history.conversation_id is None

    @pytest.mark.asyncio
    async def test_open_without_history(self, session, source) -> None:
        assert await session.open("c1", load_history=False) is True
        source.get_history_page.assert_not_awaited()

    def test_from_config(self, manager) -> None:
        config = Config.model_validate({
            "identity": {"userId": "u9", "userName": "Zed"},
            "history": {"pageSize": 10},
            "typing": {"idleTimeoutS": 2.0},
        })

        session = ChatSession.from_config(config, manager=manager, api=AsyncMock())

        assert session.manager is manager
        assert session.messages.user_id == "u9"
        assert session.presence.user_name == "Zed"
        assert session.history.page_size == 10
        assert session.typing.idle_timeout_s == 2.0
