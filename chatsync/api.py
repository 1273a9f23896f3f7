"""REST client for the chat backend's history endpoint."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from chatsync.config.schema import ServerConfig
from chatsync.errors import ChatApiError
from chatsync.models import HistoryPage, Message, Pagination, parse_payload


def parse_history_envelope(envelope: dict[str, Any], page: int, limit: int) -> HistoryPage:
    """
    Interpret ``{success, data?: {data, pagination}, error?}``.

    ``success: false`` raises :class:`ChatApiError`. A successful envelope
    with missing pieces is read permissively: no data means an empty page,
    and without pagination metadata ``has_more`` is False.
    """
    if not envelope.get("success"):
        raise ChatApiError(str(envelope.get("error") or "Failed to load messages"))

    data = envelope.get("data")
    if not isinstance(data, dict):
        return HistoryPage(messages=[], page=page, limit=limit, has_more=False)

    raw_pagination = data.get("pagination")
    pagination = parse_payload(Pagination, raw_pagination, "pagination") if raw_pagination is not None else None

    raw_messages = data.get("data")
    messages: list[Message] = []
    if isinstance(raw_messages, list):
        for raw in raw_messages:
            message = parse_payload(Message, raw, "history message")
            if message is not None:
                messages.append(message)

    return HistoryPage(
        messages=messages, page=page, limit=limit,
        has_more=pagination.has_more if pagination else False,
    )


class ChatApi:
    """Thin async wrapper over ``GET /api/conversations/{id}/messages``."""

    def __init__(self, config: ServerConfig | None = None, http: httpx.AsyncClient | None = None):
        self.config = config or ServerConfig()
        self._http = http

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.request_timeout_s)
        return self._http

    async def aclose(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "ChatApi":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.config.api_url.strip().rstrip('/')}/api{path}"
        headers = {"Content-Type": "application/json", **self.config.client_headers}
        try:
            response = await self._client().get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ChatApiError(f"Request to {path} failed: {e}") from e
        if not response.is_success:
            raise ChatApiError(f"HTTP error! status: {response.status_code}", status_code=response.status_code)
        try:
            parsed = response.json()
        except ValueError as e:
            raise ChatApiError(f"Invalid JSON from {path}: {response.text[:200]}") from e
        if not isinstance(parsed, dict):
            logger.warning("Unexpected response body from {}: {}", path, type(parsed).__name__)
            return {"success": True}
        return parsed

    async def get_message_history(self, conversation_id: str, page: int = 1, limit: int = 50) -> dict[str, Any]:
        """Fetch one raw history envelope."""
        return await self._get_json(
            f"/conversations/{conversation_id}/messages", {"page": page, "limit": limit},
        )

    async def get_history_page(self, conversation_id: str, page: int = 1, limit: int = 50) -> HistoryPage:
        envelope = await self.get_message_history(conversation_id, page, limit)
        return parse_history_envelope(envelope, page, limit)
