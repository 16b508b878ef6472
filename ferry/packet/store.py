"""
Ferry Message Buffer

Bounded per-host storage for messages in flight.

Features:
- Byte-capacity admission control
- Eviction by age or size when full
- Pinning of messages with an outgoing transfer
- Thread-safe operations

Design:
- Messages stored until delivered, expired or evicted
- Evictions are reported, never retried
- Messages without a copy count are dropped from consideration
"""

import logging
import threading
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set

from ..config import EvictionPolicy
from ..errors import BufferFull, MessageExpired, MissingReplicationState
from .message import HostId, Message


logger = logging.getLogger("ferry.store")


EvictCallback = Callable[[Message], None]


class MessageBuffer:
    """
    Bounded message buffer for one host.

    Usage:
        buffer = MessageBuffer(capacity=5_000_000)

        # Admit a message, evicting others if needed
        try:
            evicted = buffer.admit(message, now)
        except BufferFull:
            drop(message)

        # Messages for hosts we are in contact with
        for msg in buffer.deliverable_now(peer_ids):
            offer(msg)
    """

    def __init__(
        self,
        capacity: int,
        eviction_policy: EvictionPolicy = EvictionPolicy.OLDEST,
        on_evict: Optional[EvictCallback] = None,
    ):
        """
        Initialize message buffer.

        Args:
            capacity: Buffer size in bytes
            eviction_policy: Which resident message goes first
            on_evict: Called once for every evicted message
        """
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")

        self._capacity = capacity
        self._eviction_policy = eviction_policy
        self._on_evict = on_evict

        # message id -> Message, in arrival order
        self._messages: Dict[str, Message] = {}
        self._used = 0

        # Messages with an outgoing transfer in progress
        self._pinned: Set[str] = set()

        self._lock = threading.RLock()

        # Statistics
        self._admitted = 0
        self._evicted = 0
        self._rejected = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def used(self) -> int:
        with self._lock:
            return self._used

    @property
    def free(self) -> int:
        with self._lock:
            return self._capacity - self._used

    def _eviction_order(self) -> List[Message]:
        """Unpinned messages, lowest priority first."""
        candidates = [m for m in self._messages.values() if m.id not in self._pinned]
        if self._eviction_policy == EvictionPolicy.LARGEST:
            return sorted(candidates, key=lambda m: (-m.size, m.received_at))
        return sorted(candidates, key=lambda m: m.received_at)

    def admit(self, message: Message, now: float) -> List[Message]:
        """
        Store a message, evicting resident messages to make room.

        Args:
            message: Message to store
            now: Current simulated time

        Returns:
            Messages evicted to make room

        Raises:
            MessageExpired: If the message TTL has run out
            BufferFull: If the message cannot fit (nothing is evicted)
        """
        if message.is_expired(now):
            raise MessageExpired(message.id)

        with self._lock:
            if message.id in self._messages:
                logger.debug(f"Message {message.id} already buffered")
                return []

            needed = message.size - (self._capacity - self._used)
            victims: List[Message] = []

            if needed > 0:
                for candidate in self._eviction_order():
                    if needed <= 0:
                        break
                    victims.append(candidate)
                    needed -= candidate.size

            if needed > 0:
                self._rejected += 1
                raise BufferFull(message.id, message.size, self._capacity - self._used)

            for victim in victims:
                self._discard(victim.id)
                self._evicted += 1

            self._messages[message.id] = message
            self._used += message.size
            self._admitted += 1

        for victim in victims:
            logger.info(f"Evicted {victim.id} ({victim.size} bytes) to admit {message.id}")
            if self._on_evict is not None:
                self._on_evict(victim)

        return victims

    def _discard(self, message_id: str) -> Optional[Message]:
        msg = self._messages.pop(message_id, None)
        if msg is not None:
            self._used -= msg.size
            self._pinned.discard(message_id)
        return msg

    def remove(self, message_id: str) -> Optional[Message]:
        """
        Remove a message.

        Returns:
            The removed message, or None if it was not buffered
        """
        with self._lock:
            return self._discard(message_id)

    def get(self, message_id: str) -> Optional[Message]:
        """Get a message by id."""
        with self._lock:
            return self._messages.get(message_id)

    def has(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._messages

    def pin(self, message_id: str) -> None:
        """Protect a message from eviction while it is being sent."""
        with self._lock:
            if message_id in self._messages:
                self._pinned.add(message_id)

    def unpin(self, message_id: str) -> None:
        with self._lock:
            self._pinned.discard(message_id)

    def is_pinned(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._pinned

    def deliverable_now(self, peer_ids: Iterable[HostId]) -> List[Message]:
        """
        Get messages whose destination is a current direct contact.

        Args:
            peer_ids: Hosts we are currently connected to

        Returns:
            Messages in arrival order
        """
        peers = set(peer_ids)
        with self._lock:
            return [m for m in self._messages.values() if m.destination in peers]

    def with_copies_left(self, predicate: Callable[[int], bool]) -> List[Message]:
        """
        Get messages whose copy count satisfies predicate.

        A message without a copy count was not created by this engine; it is
        logged, removed and left out of the result.

        Args:
            predicate: Test applied to copies_left

        Returns:
            Matching messages in arrival order
        """
        result = []
        with self._lock:
            for msg in list(self._messages.values()):
                if msg.copies_left is None:
                    err = MissingReplicationState(msg.id, "no copy count")
                    logger.warning(f"Dropping message: {err}")
                    self._discard(msg.id)
                    self._dropped += 1
                    continue
                if predicate(msg.copies_left):
                    result.append(msg)
        return result

    def drop_expired(self, now: float) -> List[Message]:
        """
        Remove messages whose TTL has run out.

        Returns:
            Removed messages
        """
        with self._lock:
            expired = [
                m for m in self._messages.values()
                if m.is_expired(now) and m.id not in self._pinned
            ]
            for msg in expired:
                self._discard(msg.id)
                self._dropped += 1

        for msg in expired:
            logger.debug(f"Message {msg.id} expired")

        return expired

    def get_stats(self) -> dict:
        """Get buffer statistics."""
        with self._lock:
            return {
                "messages": len(self._messages),
                "capacity": self._capacity,
                "used": self._used,
                "free": self._capacity - self._used,
                "pinned": len(self._pinned),
                "admitted": self._admitted,
                "evicted": self._evicted,
                "rejected": self._rejected,
                "dropped": self._dropped,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        with self._lock:
            return iter(list(self._messages.values()))

    def __contains__(self, message_id: str) -> bool:
        return self.has(message_id)
