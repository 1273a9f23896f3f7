"""Connection manager: the single socket.io connection shared by all trackers.

The manager is constructed explicitly and handed to every tracker; it is
meant to be connected when the user session starts and disconnected on
logout. Reconnection and backoff are left to the socket.io client.

Listeners are kept in the manager's own registry rather than on the socket
client, so a handler can be removed without touching the others registered
for the same event. ``on()`` returns a :class:`Subscription` that trackers
collect and dispose as one unit.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

import socketio
from loguru import logger

from chatsync.config.schema import ServerConfig

try:
    import msgpack  # noqa: F401
    MSGPACK_AVAILABLE = True
except ImportError:
    MSGPACK_AVAILABLE = False

Handler = Callable[..., Any]

# Inbound events
EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_ERROR = "connect_error"
EVENT_NEW_MESSAGE = "new_message"
EVENT_MESSAGE_READ = "message_read"
EVENT_MESSAGE_DELETED = "message_deleted"
EVENT_REACTION_ADDED = "reaction_added"
EVENT_REACTION_REMOVED = "reaction_removed"
EVENT_PRESENCE_UPDATE = "user_presence_update"
EVENT_USER_TYPING = "user_typing"
EVENT_USER_STOPPED_TYPING = "user_stopped_typing"

INBOUND_EVENTS = (
    EVENT_CONNECT, EVENT_DISCONNECT, EVENT_ERROR,
    EVENT_NEW_MESSAGE, EVENT_MESSAGE_READ, EVENT_MESSAGE_DELETED,
    EVENT_REACTION_ADDED, EVENT_REACTION_REMOVED, EVENT_PRESENCE_UPDATE,
    EVENT_USER_TYPING, EVENT_USER_STOPPED_TYPING,
)
_NO_PAYLOAD_EVENTS = frozenset({EVENT_CONNECT, EVENT_DISCONNECT})

# Outbound events
EMIT_JOIN_CONVERSATION = "join_conversation"
EMIT_SEND_MESSAGE = "send_message"
EMIT_DELETE_MESSAGE = "delete_message"
EMIT_MARK_READ = "mark_message_read"
EMIT_ADD_REACTION = "add_reaction"
EMIT_REMOVE_REACTION = "remove_reaction"
EMIT_USER_ONLINE = "user_online"
EMIT_TYPING_START = "typing_start"
EMIT_TYPING_STOP = "typing_stop"


class Subscription:
    """Disposable handle for one listener registration."""

    def __init__(self, manager: "ConnectionManager", event: str, handler: Handler):
        self.manager = manager
        self.event = event
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        if not self._active:
            return
        self._active = False
        self.manager.off(self.event, self.handler)

    def __repr__(self) -> str:
        state = "active" if self._active else "disposed"
        return f"<Subscription {self.event} {state}>"


class ConnectionManager:
    """Owns the realtime connection, the listener registry and outbound emits."""

    def __init__(self, config: ServerConfig | None = None, client: Any = None):
        self.config = config or ServerConfig()
        self._client: Any = None
        self._listeners: dict[str, list[Handler]] = {}
        if client is not None:
            self._attach(client)

    # ---- lifecycle ---------------------------------------------------------

    async def connect(self) -> bool:
        """Open the connection. Returns False (and logs) if it cannot be established."""
        if self.is_connected():
            return True
        if self._client is None:
            self._attach(self._build_client())

        url = self.config.resolved_socket_url()
        try:
            await self._client.connect(
                url, transports=["websocket"],
                socketio_path=self.config.socket_path.strip().lstrip("/") or "socket.io",
                headers=dict(self.config.client_headers),
                wait_timeout=max(1.0, self.config.connect_timeout_ms / 1000.0),
            )
            return True
        except Exception as e:
            logger.error("Failed to connect chat socket at {}: {}", url, e)
            return False

    async def disconnect(self) -> None:
        """Close the connection; registered listeners are kept for the next connect."""
        if self._client is None:
            return
        try:
            await self._client.disconnect()
        except Exception as e:
            logger.warning("Chat socket disconnect failed: {}", e)

    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    async def __aenter__(self) -> "ConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    def _build_client(self) -> Any:
        serializer = "default"
        if not self.config.disable_msgpack:
            if MSGPACK_AVAILABLE:
                serializer = "msgpack"
            else:
                logger.warning("msgpack not installed but disable_msgpack=false; using JSON")

        return socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=self.config.max_retry_attempts or 0,
            reconnection_delay=max(0.1, self.config.reconnect_delay_ms / 1000.0),
            reconnection_delay_max=max(0.1, self.config.max_reconnect_delay_ms / 1000.0),
            logger=False, engineio_logger=False, serializer=serializer,
        )

    def _attach(self, client: Any) -> None:
        self._client = client
        for event in INBOUND_EVENTS:
            client.on(event, self._build_dispatcher(event))

    def _build_dispatcher(self, event: str):
        async def handler(*args: Any) -> None:
            if event == EVENT_CONNECT:
                logger.info("Chat socket connected")
            elif event == EVENT_DISCONNECT:
                logger.warning("Chat socket disconnected")
            elif event == EVENT_ERROR:
                logger.error("Chat socket connect error: {}", args[0] if args else None)
            await self._dispatch(event, *args)
        return handler

    async def _dispatch(self, event: str, *args: Any) -> None:
        call_args = () if event in _NO_PAYLOAD_EVENTS else args[:1]
        for handler in list(self._listeners.get(event, ())):
            try:
                result = handler(*call_args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Listener for {} failed: {}", event, e)

    # ---- subscriptions -----------------------------------------------------

    def on(self, event: str, handler: Handler) -> Subscription:
        """Register *handler* for *event* and return its disposable handle."""
        if event not in INBOUND_EVENTS:
            raise ValueError(f"unknown event '{event}'")
        self._listeners.setdefault(event, []).append(handler)
        return Subscription(self, event, handler)

    def off(self, event: str, handler: Handler) -> None:
        """Remove one registration of *handler* for *event*; no-op if absent."""
        handlers = self._listeners.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._listeners.pop(event, None)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(h) for h in self._listeners.values())

    def on_connect(self, handler: Handler) -> Subscription:
        return self.on(EVENT_CONNECT, handler)

    def off_connect(self, handler: Handler) -> None:
        self.off(EVENT_CONNECT, handler)

    def on_disconnect(self, handler: Handler) -> Subscription:
        return self.on(EVENT_DISCONNECT, handler)

    def off_disconnect(self, handler: Handler) -> None:
        self.off(EVENT_DISCONNECT, handler)

    def on_error(self, handler: Handler) -> Subscription:
        return self.on(EVENT_ERROR, handler)

    def off_error(self, handler: Handler) -> None:
        self.off(EVENT_ERROR, handler)

    def on_new_message(self, handler: Handler) -> Subscription:
        return self.on(EVENT_NEW_MESSAGE, handler)

    def off_new_message(self, handler: Handler) -> None:
        self.off(EVENT_NEW_MESSAGE, handler)

    def on_message_read(self, handler: Handler) -> Subscription:
        return self.on(EVENT_MESSAGE_READ, handler)

    def off_message_read(self, handler: Handler) -> None:
        self.off(EVENT_MESSAGE_READ, handler)

    def on_message_deleted(self, handler: Handler) -> Subscription:
        return self.on(EVENT_MESSAGE_DELETED, handler)

    def off_message_deleted(self, handler: Handler) -> None:
        self.off(EVENT_MESSAGE_DELETED, handler)

    def on_reaction_added(self, handler: Handler) -> Subscription:
        return self.on(EVENT_REACTION_ADDED, handler)

    def off_reaction_added(self, handler: Handler) -> None:
        self.off(EVENT_REACTION_ADDED, handler)

    def on_reaction_removed(self, handler: Handler) -> Subscription:
        return self.on(EVENT_REACTION_REMOVED, handler)

    def off_reaction_removed(self, handler: Handler) -> None:
        self.off(EVENT_REACTION_REMOVED, handler)

    def on_presence_update(self, handler: Handler) -> Subscription:
        return self.on(EVENT_PRESENCE_UPDATE, handler)

    def off_presence_update(self, handler: Handler) -> None:
        self.off(EVENT_PRESENCE_UPDATE, handler)

    def on_user_typing(self, handler: Handler) -> Subscription:
        return self.on(EVENT_USER_TYPING, handler)

    def off_user_typing(self, handler: Handler) -> None:
        self.off(EVENT_USER_TYPING, handler)

    def on_user_stopped_typing(self, handler: Handler) -> Subscription:
        return self.on(EVENT_USER_STOPPED_TYPING, handler)

    def off_user_stopped_typing(self, handler: Handler) -> None:
        self.off(EVENT_USER_STOPPED_TYPING, handler)

    # ---- emits -------------------------------------------------------------
    # Every emit is dropped silently while disconnected.

    async def _emit(self, event: str, data: Any) -> bool:
        if not self.is_connected():
            logger.debug("Dropping {} emit, socket not connected", event)
            return False
        try:
            await self._client.emit(event, data)
        except Exception as e:
            logger.warning("Chat socket emit {} failed: {}", event, e)
            return False
        return True

    async def join_conversation(self, conversation_id: str) -> bool:
        return await self._emit(EMIT_JOIN_CONVERSATION, conversation_id)

    async def send_message(
        self, text: str, sender_id: str, sender_name: str, conversation_id: str,
        *, reply_to_id: str | None = None, thread_id: str | None = None,
    ) -> bool:
        payload: dict[str, Any] = {
            "text": text, "senderId": sender_id,
            "senderName": sender_name, "conversationId": conversation_id,
        }
        if reply_to_id:
            payload["replyToId"] = reply_to_id
        if thread_id:
            payload["threadId"] = thread_id
        return await self._emit(EMIT_SEND_MESSAGE, payload)

    async def delete_message(self, message_id: str, conversation_id: str, user_id: str) -> bool:
        return await self._emit(EMIT_DELETE_MESSAGE, {
            "messageId": message_id, "conversationId": conversation_id, "userId": user_id,
        })

    async def mark_message_as_read(
        self, message_id: str, conversation_id: str, user_id: str, user_name: str,
    ) -> bool:
        return await self._emit(EMIT_MARK_READ, {
            "messageId": message_id, "conversationId": conversation_id,
            "userId": user_id, "userName": user_name,
        })

    async def add_reaction(
        self, message_id: str, conversation_id: str, user_id: str, user_name: str, emoji: str,
    ) -> bool:
        return await self._emit(EMIT_ADD_REACTION, {
            "messageId": message_id, "conversationId": conversation_id,
            "userId": user_id, "userName": user_name, "emoji": emoji,
        })

    async def remove_reaction(
        self, message_id: str, conversation_id: str, user_id: str, reaction_id: str,
    ) -> bool:
        return await self._emit(EMIT_REMOVE_REACTION, {
            "messageId": message_id, "conversationId": conversation_id,
            "userId": user_id, "reactionId": reaction_id,
        })

    async def set_user_online(self, user_id: str, user_name: str, conversation_id: str | None = None) -> bool:
        payload: dict[str, Any] = {"userId": user_id, "userName": user_name}
        if conversation_id:
            payload["conversationId"] = conversation_id
        return await self._emit(EMIT_USER_ONLINE, payload)

    async def start_typing(self, conversation_id: str, user_id: str, user_name: str) -> bool:
        return await self._emit(EMIT_TYPING_START, {
            "conversationId": conversation_id, "userId": user_id, "userName": user_name,
        })

    async def stop_typing(self, conversation_id: str, user_id: str) -> bool:
        return await self._emit(EMIT_TYPING_STOP, {"conversationId": conversation_id, "userId": user_id})
