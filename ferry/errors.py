"""
Ferry Error Taxonomy

Every error raised by the engine derives from FerryError. Only ConfigError
is fatal; the others are consumed within the tick that raised them.
"""

from typing import Optional


class FerryError(Exception):
    pass


class ConfigError(FerryError, ValueError):
    """Raised when a required setting is missing or invalid."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class MissingReplicationState(FerryError):
    """
    Raised when a message lacks its copy count or the sector state the
    active policy expects. Such a message was not created by this engine.
    """

    def __init__(self, message_id: str, detail: str):
        super().__init__(f"Message {message_id}: {detail}")
        self.message_id = message_id
        self.detail = detail


class BufferFull(FerryError):
    """Raised when a message cannot be admitted to a buffer."""

    def __init__(self, message_id: str, size: int, free: int):
        super().__init__(
            f"No room for message {message_id} ({size} bytes, {free} free)"
        )
        self.message_id = message_id
        self.size = size
        self.free = free


class MessageExpired(FerryError):
    """Raised when admitting a message whose TTL has already run out."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} has expired")
        self.message_id = message_id


class StaleTransfer(FerryError):
    """Raised when a transfer outlives its contact or its message."""

    def __init__(self, message_id: str, reason: str):
        super().__init__(f"Transfer of {message_id} is stale: {reason}")
        self.message_id = message_id
        self.reason = reason
