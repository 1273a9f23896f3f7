"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ServerConfig(Base):
    """Realtime and REST endpoints of the chat backend."""

    api_url: str = "http://localhost:3000"
    socket_url: str = ""  # empty = same origin as api_url
    socket_path: str = "/socket.io"
    connect_timeout_ms: int = 10000
    reconnect_delay_ms: int = 1000
    max_reconnect_delay_ms: int = 5000
    max_retry_attempts: int = 0  # 0 = retry forever
    disable_msgpack: bool = True
    request_timeout_s: float = 30.0
    client_headers: dict[str, str] = Field(default_factory=lambda: {"X-Platform": "python"})

    def resolved_socket_url(self) -> str:
        return (self.socket_url or self.api_url).strip().rstrip("/")


class IdentityConfig(Base):
    """Who this client speaks as."""

    user_id: str = ""
    user_name: str = ""


class HistoryConfig(Base):
    page_size: int = 50


class TypingConfig(Base):
    idle_timeout_s: float = 1.0  # local idle time before stop_typing is emitted
    expire_after_s: float = 3.0  # remote typer is dropped after this much silence


class Config(Base):
    """Root configuration for chatsync."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    typing: TypingConfig = Field(default_factory=TypingConfig)
