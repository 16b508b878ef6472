"""
Ferry Delivery Log

Remembers which messages a host has received as their final destination,
so a second copy arriving later is refused instead of delivered twice.

Features:
- Keyed by message digest
- Unbounded by default; an optional size bound forgets the oldest entries
- Thread-safe operations

Design:
- Uses simulated time, supplied by the caller
- Entries never expire on their own
- An unbounded log remembers every delivery; a bounded one may report a
  long-forgotten message as a first delivery again
"""

import threading
from typing import Dict, Optional
from dataclasses import dataclass

from .digest import message_digest


@dataclass
class DeliveryEntry:
    """Entry in the delivery log."""
    digest: bytes
    delivered_at: float
    duplicates: int = 0  # Copies refused after delivery


class DeliveryLog:
    """
    Log of messages delivered to this host.

    Usage:
        log = DeliveryLog()

        if log.check_and_add(message.id, now):
            # Already delivered - refuse the copy
            pass
        else:
            # First delivery
            hand_to_application(message)
    """

    def __init__(self, max_entries: Optional[int] = None):
        """
        Initialize delivery log.

        Args:
            max_entries: Maximum number of entries before forced eviction
                (default: None, never evict)
        """
        self._max_entries = max_entries

        # digest -> DeliveryEntry
        self._entries: Dict[bytes, DeliveryEntry] = {}

        self._lock = threading.RLock()

        # Statistics
        self._delivered = 0
        self._duplicates = 0
        self._evictions = 0

    def check(self, message_id: str) -> bool:
        """
        Check if a message has been delivered (without adding).

        Returns:
            True if the message was already delivered
        """
        digest = message_digest(message_id)
        with self._lock:
            return digest in self._entries

    def check_and_add(self, message_id: str, now: float) -> bool:
        """
        Check if a message was delivered and record it if not.

        Args:
            message_id: Message id
            now: Simulated delivery time

        Returns:
            True if the message is a duplicate (already delivered)
            False if this is the first delivery (now recorded)
        """
        digest = message_digest(message_id)

        with self._lock:
            entry = self._entries.get(digest)
            if entry is not None:
                entry.duplicates += 1
                self._duplicates += 1
                return True

            self._entries[digest] = DeliveryEntry(digest=digest, delivered_at=now)
            self._delivered += 1

            if self._max_entries is not None and len(self._entries) > self._max_entries:
                self._evict_oldest()

            return False

    def delivered_at(self, message_id: str):
        """Simulated time of delivery, or None."""
        digest = message_digest(message_id)
        with self._lock:
            entry = self._entries.get(digest)
            return entry.delivered_at if entry else None

    def _evict_oldest(self) -> None:
        """Evict oldest entries when the log is full."""
        entries = sorted(self._entries.items(), key=lambda x: x[1].delivered_at)

        # Remove oldest 10%
        to_remove = max(1, len(entries) // 10)
        for digest, _ in entries[:to_remove]:
            del self._entries[digest]
            self._evictions += 1

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self._max_entries,
                "delivered": self._delivered,
                "duplicates": self._duplicates,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, message_id: str) -> bool:
        return self.check(message_id)
