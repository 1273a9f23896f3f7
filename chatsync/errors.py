"""Exceptions raised across chatsync's public boundary."""


class ChatSyncError(Exception):
    """Base class for chatsync errors."""


class ChatApiError(ChatSyncError):
    """REST request failed: transport error, non-2xx status or undecodable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
