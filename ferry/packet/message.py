"""
Ferry Message Model

A message copy carried by one host. Identity fields never change; the
copy count and the policy state belong to this copy alone.

Design:
- Policy state is a tagged union (SectorState / StrataState)
- A copy handed to another host starts with fresh policy state
- copies_left is None only for messages created outside the engine
"""

from typing import Hashable, Optional, Set, Union
from dataclasses import dataclass, field
from enum import IntEnum


HostId = Hashable


class StateKind(IntEnum):
    """Which policy owns the per-message state."""
    DIRECTION = 1
    CONTACT_HISTORY = 2


@dataclass
class SectorState:
    """Sectors this copy has already been forwarded into."""
    sectors_sent: Set[int] = field(default_factory=set)

    kind = StateKind.DIRECTION

    def fresh(self) -> 'SectorState':
        return SectorState()


@dataclass
class StrataState:
    """Contact-history routing keeps its state on the host, not the message."""

    kind = StateKind.CONTACT_HISTORY

    def fresh(self) -> 'StrataState':
        return StrataState()


RoutingState = Union[SectorState, StrataState]


@dataclass
class Message:
    """
    One copy of a message held in a host's buffer.
    """
    # Identity
    id: str
    source: HostId
    destination: HostId

    # Content
    size: int                     # bytes

    # Timestamps (simulated seconds)
    created_at: float = 0.0
    ttl: Optional[float] = None   # None = never expires
    received_at: float = 0.0      # when this copy entered the local buffer

    # Replication
    copies_left: Optional[int] = None
    state: Optional[RoutingState] = None

    hop_count: int = 0

    def __post_init__(self):
        if self.size < 0:
            raise ValueError(f"Message size must be non-negative, got {self.size}")

    def is_expired(self, now: float) -> bool:
        """Check if the TTL has run out at simulated time now."""
        if self.ttl is None:
            return False
        return now - self.created_at >= self.ttl

    def replicate(
        self,
        copies: int,
        received_at: float,
        state: Optional[RoutingState] = None,
    ) -> 'Message':
        """
        Build the copy a receiving host stores.

        Args:
            copies: Copy count granted to the receiver
            received_at: Simulated arrival time
            state: Receiver policy state (default: fresh state of our kind)

        Returns:
            New Message sharing identity with fresh policy state
        """
        return Message(
            id=self.id,
            source=self.source,
            destination=self.destination,
            size=self.size,
            created_at=self.created_at,
            ttl=self.ttl,
            received_at=received_at,
            copies_left=copies,
            state=state if state is not None else self._fresh_state(),
            hop_count=self.hop_count + 1,
        )

    def _fresh_state(self) -> Optional[RoutingState]:
        if self.state is None:
            return None
        return self.state.fresh()

    def __repr__(self) -> str:
        return (
            f"Message({self.id!r}, {self.source!r}->{self.destination!r}, "
            f"size={self.size}, copies={self.copies_left})"
        )
