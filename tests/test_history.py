import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from chatsync.api import ChatApi, parse_history_envelope
from chatsync.config.schema import ServerConfig
from chatsync.errors import ChatApiError
from chatsync.history import HistoryPager, PagerState
from chatsync.models import HistoryPage, Message


def page_of(*ids: str, has_more: bool = False, page: int = 1) -> HistoryPage:
    return HistoryPage(messages=[Message(id=i) for i in ids], page=page, limit=2, has_more=has_more)


def make_pager(*results) -> tuple[HistoryPager, AsyncMock]:
    source = AsyncMock()
    source.get_history_page = AsyncMock(side_effect=list(results))
    return HistoryPager(source, page_size=2), source.get_history_page


def ids(pager: HistoryPager) -> list[str]:
    return [m.id for m in pager.messages]


class TestHistoryPager:
    @pytest.mark.asyncio
    async def test_initial_load_then_more(self) -> None:
        """Page 1 replaces the list, later pages append and advance current_page."""
        pager, fetch = make_pager(page_of("m1", "m2", has_more=True), page_of("m3", page=2))

        assert pager.state is PagerState.IDLE
        assert await pager.load_initial_messages("c1") is True
        assert ids(pager) == ["m1", "m2"]
        assert pager.state is PagerState.LOADED

        assert await pager.load_more() is True
        assert ids(pager) == ["m1", "m2", "m3"]
        assert pager.current_page == 2
        assert pager.has_more is False
        fetch.assert_awaited_with("c1", 2, 2)

    @pytest.mark.asyncio
    async def test_load_more_at_end_does_not_fetch(self) -> None:
        """No request is made once has_more is False."""
        pager, fetch = make_pager(page_of("m1"))
        await pager.load_initial_messages("c1")

        assert await pager.load_more() is False
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_unbound_pager_does_not_fetch(self) -> None:
        pager, fetch = make_pager()

        assert await pager.load_more() is False
        assert await pager.refresh() is False
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_more_while_loading_is_ignored(self) -> None:
        """load_more and refresh do nothing while a fetch is in flight."""
        gate = asyncio.Event()
        pager, fetch = make_pager()

        async def slow(conversation_id, page, limit):
            await gate.wait()
            return page_of("m1", has_more=True)

        fetch.side_effect = slow
        initial = asyncio.create_task(pager.load_initial_messages("c1"))
        await asyncio.sleep(0)
        assert pager.is_loading is True

        assert await pager.load_more() is False
        assert await pager.refresh() is False

        gate.set()
        await initial
        assert fetch.await_count == 1
        assert pager.is_loading is False

    @pytest.mark.asyncio
    async def test_initial_load_replaces_previous_conversation(self) -> None:
        """Switching conversations resets paging to page 1 and replaces the list."""
        pager, _ = make_pager(page_of("a1", "a2", has_more=True), page_of("a3", has_more=True, page=2), page_of("b1"))
        await pager.load_initial_messages("c1")
        await pager.load_more()
        assert pager.current_page == 2

        await pager.load_initial_messages("c2")

        assert pager.conversation_id == "c2"
        assert ids(pager) == ["b1"]
        assert pager.current_page == 1

    @pytest.mark.asyncio
    async def test_failed_initial_load_after_paging_resets(self) -> None:
        """A failed load for a new conversation still resets page and list."""
        pager, _ = make_pager(
            page_of("a1", "a2", has_more=True), page_of("a3", has_more=True, page=2), ChatApiError("forbidden"),
        )
        await pager.load_initial_messages("c1")
        await pager.load_more()

        assert await pager.load_initial_messages("c2") is False

        assert pager.current_page == 1
        assert pager.messages == []
        assert pager.is_loading is False
        assert pager.error == "forbidden"

    @pytest.mark.asyncio
    async def test_refresh_replaces_list(self) -> None:
        """Refresh fetches page 1 again and replaces rather than appends."""
        pager, _ = make_pager(
            page_of("m1", "m2", has_more=True), page_of("m3", page=2), page_of("m0", "m1", has_more=True),
        )
        await pager.load_initial_messages("c1")
        await pager.load_more()

        assert await pager.refresh() is True
        assert ids(pager) == ["m0", "m1"]
        assert pager.current_page == 1
        assert pager.has_more is True

    @pytest.mark.asyncio
    async def test_failure_sets_error_and_keeps_messages(self) -> None:
        """A failed page leaves the loaded messages untouched."""
        pager, _ = make_pager(
            page_of("m1", has_more=True), ChatApiError("HTTP error! status: 500", status_code=500),
        )
        await pager.load_initial_messages("c1")

        assert await pager.load_more() is False
        assert pager.error == "HTTP error! status: 500"
        assert pager.state is PagerState.ERRORED
        assert ids(pager) == ["m1"]
        assert pager.is_loading is False

    @pytest.mark.asyncio
    async def test_stale_response_is_dropped(self) -> None:
        """A slow response for a previous conversation never overwrites the current one."""
        gate = asyncio.Event()
        pager, fetch = make_pager()

        async def fetch_page(conversation_id, page, limit):
            if conversation_id == "old":
                await gate.wait()
                return page_of("stale")
            return page_of("fresh")

        fetch.side_effect = fetch_page
        old = asyncio.create_task(pager.load_initial_messages("old"))
        await asyncio.sleep(0)

        assert await pager.load_initial_messages("new") is True
        gate.set()
        assert await old is False

        assert pager.conversation_id == "new"
        assert ids(pager) == ["fresh"]

    @pytest.mark.asyncio
    async def test_cancelled_fetch_clears_loading(self) -> None:
        """Cancelling a fetch does not leave the pager stuck in loading."""
        pager, fetch = make_pager(page_of("m1", has_more=True), page_of("m2", page=2))
        await pager.load_initial_messages("c1")
        blocked = asyncio.Event()

        async def hang(conversation_id, page, limit):
            await blocked.wait()

        fetch.side_effect = hang
        task = asyncio.create_task(pager.load_more())
        await asyncio.sleep(0)
        assert pager.is_loading is True

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert pager.is_loading is False
        fetch.side_effect = [page_of("m2", page=2)]
        assert await pager.load_more() is True
        assert ids(pager) == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_reset_unbinds(self) -> None:
        pager, _ = make_pager(page_of("m1"))
        await pager.load_initial_messages("c1")

        pager.reset()

        assert pager.conversation_id is None
        assert pager.messages == []
        assert pager.state is PagerState.IDLE


class TestHistoryEnvelope:
    def test_success_with_pagination(self) -> None:
        envelope = {
            "success": True,
            "data": {
                "data": [{"id": "m1", "text": "hi", "senderName": "Bob"}, {"no": "id"}],
                "pagination": {"page": 1, "limit": 50, "hasMore": True},
            },
        }
        page = parse_history_envelope(envelope, 1, 50)

        assert [m.id for m in page.messages] == ["m1"]
        assert page.has_more is True

    def test_missing_pieces_are_permissive(self) -> None:
        """Missing data or pagination reads as an empty or final page."""
        assert parse_history_envelope({"success": True}, 1, 50).messages == []
        page = parse_history_envelope({"success": True, "data": {"data": [{"id": "m1"}]}}, 2, 50)
        assert page.has_more is False
        assert page.page == 2

    def test_failure_raises(self) -> None:
        """success: false becomes ChatApiError with the server's message."""
        with pytest.raises(ChatApiError, match="conversation not found"):
            parse_history_envelope({"success": False, "error": "conversation not found"}, 1, 50)
        with pytest.raises(ChatApiError, match="Failed to load messages"):
            parse_history_envelope({"success": False}, 1, 50)


def make_api(handler) -> ChatApi:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatApi(ServerConfig(api_url="http://chat.local/"), http=http)


class TestChatApi:
    @pytest.mark.asyncio
    async def test_get_history_page(self) -> None:
        """Page and limit go out as query parameters with the client headers."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "success": True,
                "data": {"data": [{"id": "m1"}], "pagination": {"hasMore": False}},
            })

        async with make_api(handler) as api:
            page = await api.get_history_page("c1", page=3, limit=20)

        assert [m.id for m in page.messages] == ["m1"]
        assert seen[0].url.path == "/api/conversations/c1/messages"
        assert seen[0].url.params["page"] == "3"
        assert seen[0].url.params["limit"] == "20"
        assert seen[0].headers["X-Platform"] == "python"

    @pytest.mark.asyncio
    async def test_http_status_error(self) -> None:
        """Non-2xx responses raise ChatApiError carrying the status code."""
        async with make_api(lambda request: httpx.Response(503)) as api:
            with pytest.raises(ChatApiError, match="HTTP error! status: 503") as exc_info:
                await api.get_history_page("c1")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_api(handler) as api:
            with pytest.raises(ChatApiError, match="connection refused"):
                await api.get_history_page("c1")

    @pytest.mark.asyncio
    async def test_pager_surfaces_api_failure(self) -> None:
        """The pager turns an API failure into its error string."""
        handler = lambda request: httpx.Response(200, json={"success": False, "error": "forbidden"})

        async with make_api(handler) as api:
            pager = HistoryPager(api)
            assert await pager.load_initial_messages("c1") is False

        assert pager.error == "forbidden"
        assert pager.messages == []
