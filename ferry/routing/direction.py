"""
Ferry Direction Policy

Spreads copies across compass sectors.

Design:
- A host's heading falls into one of k equal sectors
- A contact is admitted when the peer travels in a materially different
  direction, or faster than we do
- Each copy remembers the sectors it was forwarded into and is not sent
  into the same sector twice; a received copy starts with no sectors
"""

import logging
import math
from typing import TYPE_CHECKING, List, Optional, Set

from ..errors import MissingReplicationState
from ..mesh.contact import Contact, TWO_PI
from ..packet.message import Message, SectorState, StateKind
from .policy import NeighborFilter

if TYPE_CHECKING:
    from .scheduler import Router, Transfer


logger = logging.getLogger("ferry.direction")


def sector_of(heading: float, k: int) -> int:
    """
    Sector index of a heading.

    Sectors are half-open: sector i covers [i*2pi/k, (i+1)*2pi/k). Headings
    are first normalized into [0, 2pi).

    Args:
        heading: Direction of travel in radians
        k: Number of sectors (direction coefficient)

    Returns:
        Sector index in [0, k-1]
    """
    if k < 1:
        raise ValueError(f"Sector count must be positive, got {k}")

    heading = math.fmod(heading, TWO_PI)
    if heading < 0:
        heading += TWO_PI

    sector = int(heading // (TWO_PI / k))
    return min(max(sector, 0), k - 1)


class DirectionFilter(NeighborFilter):
    """
    Direction-aware spreading.

    Usage:
        policy = DirectionFilter(host, config, env)

        admitted = policy.filter_contacts(router, contacts)
        if policy.allows(router, msg, contact, peer_router):
            send(msg, contact)
    """

    name = "direction"

    @property
    def sectors(self) -> int:
        return self.config.direction_coefficient

    def new_state(self) -> SectorState:
        return SectorState()

    def sector_of_host(self, host) -> Optional[int]:
        """Sector a host is currently heading into, or None if not moving."""
        heading = self.env.heading(host)
        if heading is None:
            return None
        return sector_of(heading, self.sectors)

    def _sectors_sent(self, message: Message) -> Set[int]:
        state = message.state
        if state is None or state.kind != StateKind.DIRECTION:
            raise MissingReplicationState(message.id, "no sector state")
        return state.sectors_sent

    def filter_contacts(self, router: 'Router', contacts: List[Contact]) -> List[Contact]:
        """
        Admit contacts heading materially elsewhere, or moving faster.

        Contacts are skipped when either side has no heading.
        """
        self_heading = self.env.heading(router.host)
        if self_heading is None:
            return []

        threshold = math.pi / self.sectors
        self_speed = self.env.speed(router.host)
        admitted = []

        for contact in contacts:
            peer_heading = self.env.heading(contact.peer)
            if peer_heading is None:
                continue

            deviation = abs(self_heading - peer_heading)
            if deviation > threshold:
                admitted.append(contact)
            elif self.env.speed(contact.peer) > self_speed:
                admitted.append(contact)

        return admitted

    def is_candidate(self, router: 'Router', message: Message, contacts: List[Contact]) -> bool:
        """Check if any admitted contact lies in a sector this copy has not covered."""
        sent = self._sectors_sent(message)
        for contact in contacts:
            sector = self.sector_of_host(contact.peer)
            if sector is not None and sector not in sent:
                return True
        return False

    def allows(
        self,
        router: 'Router',
        message: Message,
        contact: Contact,
        peer_router: 'Router',
    ) -> bool:
        sector = self.sector_of_host(contact.peer)
        if sector is None:
            return False
        return sector not in self._sectors_sent(message)

    def on_transfer_done(self, router: 'Router', message: Message, transfer: 'Transfer') -> None:
        """Mark the receiver's sector as covered on the local copy."""
        heading = self.env.heading(transfer.receiver)
        if heading is None:
            # Receiver stopped before the transfer finished
            heading = transfer.peer_heading
        if heading is None:
            return

        sector = sector_of(heading, self.sectors)
        sent = self._sectors_sent(message)
        sent.add(sector)
        logger.debug(f"{router.host}: {message.id} covered sector {sector} ({sorted(sent)})")
