"""
Ferry Replication Controller

Owns the copy-count arithmetic of a message as it moves between hosts.

Modes:
- BINARY: receiver gets ceil(n/2), sender keeps floor(n/2)
- SINGLE: receiver gets 1, sender keeps n-1

A copy is spread only while it has more than one copy left; at one copy it
waits for a direct contact with its destination.
"""

import math
from typing import Tuple
from enum import IntEnum

from ..config import RoutingConfig
from ..errors import MissingReplicationState
from ..packet.message import Message


class ReplicationMode(IntEnum):
    """How copies are split on hand-off."""
    SINGLE = 1
    BINARY = 2


class ReplicationController:
    """
    Copy-count rules for one host.

    Usage:
        replication = ReplicationController(config)

        if replication.can_spread(replication.copies_of(msg)):
            offer(msg)

        # After the transfer finished
        msg.copies_left = replication.sender_copies(msg.copies_left)
    """

    def __init__(self, config: RoutingConfig):
        self._initial_copies = config.initial_copies
        self._mode = ReplicationMode.BINARY if config.binary_mode else ReplicationMode.SINGLE

    @property
    def mode(self) -> ReplicationMode:
        return self._mode

    @property
    def initial_copies(self) -> int:
        return self._initial_copies

    def receiver_copies(self, copies: int) -> int:
        """Copies granted to the receiving host out of the sender's copies."""
        if copies < 1:
            raise ValueError(f"Cannot split {copies} copies")
        if self._mode == ReplicationMode.BINARY:
            return math.ceil(copies / 2)
        return 1

    def sender_copies(self, copies: int) -> int:
        """Copies the sender keeps once a transfer has completed."""
        if copies < 1:
            raise ValueError(f"Cannot split {copies} copies")
        if self._mode == ReplicationMode.BINARY:
            return copies // 2
        return copies - 1

    def split(self, copies: int) -> Tuple[int, int]:
        """
        Preview a hand-off.

        Returns:
            Tuple of (receiver copies, sender copies)
        """
        return self.receiver_copies(copies), self.sender_copies(copies)

    def copies_of(self, message: Message) -> int:
        """
        Copy count of a message.

        Raises:
            MissingReplicationState: If the message carries no copy count
        """
        if message.copies_left is None:
            raise MissingReplicationState(message.id, "no copy count")
        return message.copies_left

    @staticmethod
    def can_spread(copies: int) -> bool:
        """Check if a copy count allows hand-off to non-destination hosts."""
        return copies > 1
