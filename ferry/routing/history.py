"""
Ferry Contact-History Policy

Forwards copies toward hosts with better evidence of reaching the
destination, subject to buffer headroom.

Features:
- Stratified view of known hosts (first hop, multi hop, mules)
- Strata learned transitively from every peer met
- Buffer-pressure comparison between the two sides of a contact

Design:
- Strata belong to the host and are never reset
- A host is never in first_hop and multi_hop at the same time
- Pressure is evaluated on demand from the current buffer fill
"""

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Set
from dataclasses import dataclass, field

from ..mesh.contact import Contact
from ..packet.message import HostId, Message, StrataState
from .policy import NeighborFilter

if TYPE_CHECKING:
    from .scheduler import Router


logger = logging.getLogger("ferry.history")


def buffer_ratio(capacity: int, free: int) -> float:
    """capacity / free, infinite for a full buffer."""
    if free <= 0:
        return float("inf")
    return capacity / free


def running_low(capacity: int, free: int, low_buffer_factor: int) -> bool:
    """Check if a buffer is short of free space."""
    return buffer_ratio(capacity, free) > low_buffer_factor


def running_high(capacity: int, free: int, high_buffer_factor: int) -> bool:
    """Check if a buffer has plenty of free space."""
    return buffer_ratio(capacity, free) < high_buffer_factor


@dataclass
class Strata:
    """
    Hosts known to one host, by evidence.
    """
    # Directly met hosts -> number of encounters
    first_hop: Dict[HostId, int] = field(default_factory=dict)

    # Hosts known through peers' records
    multi_hop: Set[HostId] = field(default_factory=set)

    # High-capacity relays
    mules: Set[HostId] = field(default_factory=set)

    def knows(self, host: HostId) -> bool:
        """Check if host appears in any stratum."""
        return host in self.first_hop or host in self.multi_hop or host in self.mules

    def known_hosts(self) -> Set[HostId]:
        return set(self.first_hop) | self.multi_hop | self.mules

    def add_first_hop(self, host: HostId) -> int:
        """
        Record a direct encounter.

        Returns:
            Encounter count after this one
        """
        self.multi_hop.discard(host)
        self.first_hop[host] = self.first_hop.get(host, 0) + 1
        return self.first_hop[host]

    def add_multi_hop(
        self,
        peer_strata: 'Strata',
        self_id: HostId,
        mule_hosts: Iterable[HostId] = (),
    ) -> List[HostId]:
        """
        Learn hosts a peer knows about.

        Args:
            peer_strata: Strata of the peer just met
            self_id: Our own host id, never learned
            mule_hosts: Learned hosts that are mules

        Returns:
            Hosts newly added to multi_hop
        """
        mules = set(mule_hosts)
        learned = []
        for host in peer_strata.known_hosts():
            if host == self_id or self.knows(host):
                continue
            self.multi_hop.add(host)
            if host in mules:
                self.mules.add(host)
            learned.append(host)
        return learned

    def snapshot(self) -> dict:
        return {
            "first_hop": dict(self.first_hop),
            "multi_hop": set(self.multi_hop),
            "mules": set(self.mules),
        }


class ContactHistoryFilter(NeighborFilter):
    """
    Contact-history and buffer-pressure forwarding.

    Usage:
        policy = ContactHistoryFilter(host, config, env)

        # On every contact-up
        policy.on_contact_up(router, peer_router)

        if policy.allows(router, msg, contact, peer_router):
            send(msg, contact)
    """

    name = "contact_history"

    def __init__(self, host, config, env):
        super().__init__(host, config, env)
        self.strata = Strata()

    def new_state(self) -> StrataState:
        return StrataState()

    def is_mule(self, host: HostId) -> bool:
        """Check if host has a mule-sized buffer."""
        capacity = self.env.buffer_capacity(host)
        if capacity is None:
            capacity = self.config.buffer_size
        return capacity >= self.config.mule_buffer_threshold

    def on_contact_up(self, router: 'Router', peer_router: 'Router') -> None:
        peer = peer_router.host

        if self.is_mule(peer):
            self.strata.mules.add(peer)

        count = self.strata.add_first_hop(peer)

        peer_policy = peer_router.policy
        if not isinstance(peer_policy, ContactHistoryFilter):
            logger.warning(f"{self.host}: peer {peer} keeps no contact history")
            return

        candidates = peer_policy.strata.known_hosts()
        learned = self.strata.add_multi_hop(
            peer_policy.strata,
            self.host,
            mule_hosts=[h for h in candidates if self.is_mule(h)],
        )

        logger.debug(
            f"{self.host}: met {peer} (x{count}), learned {len(learned)} host(s)"
        )

    def filter_contacts(self, router: 'Router', contacts: List[Contact]) -> List[Contact]:
        return list(contacts)

    def _pressure(self, router: 'Router'):
        buffer = router.buffer
        return (
            running_low(buffer.capacity, buffer.free, self.config.low_buffer_factor),
            running_high(buffer.capacity, buffer.free, self.config.high_buffer_factor),
        )

    def allows(
        self,
        router: 'Router',
        message: Message,
        contact: Contact,
        peer_router: 'Router',
    ) -> bool:
        """
        Decide whether peer is a better holder for message.

        Rules, first match wins:
        1. Peer is a mule and knows the destination
        2. We know nothing of the destination, the peer does
        3. Both met the destination directly, the peer at least as often,
           and the peer has headroom while we are short of space
        4. Peer met the destination directly, we only know it through
           others, and the same buffer asymmetry holds
        """
        peer_policy = peer_router.policy
        if not isinstance(peer_policy, ContactHistoryFilter):
            return False

        dest = message.destination
        mine = self.strata
        theirs = peer_policy.strata

        if theirs.knows(dest) and self.is_mule(peer_router.host):
            return True

        if not mine.knows(dest) and theirs.knows(dest):
            return True

        if dest not in theirs.first_hop:
            return False

        self_low, _ = self._pressure(router)
        _, peer_high = peer_policy._pressure(peer_router)
        if not (peer_high and self_low):
            return False

        if dest in mine.first_hop:
            return theirs.first_hop[dest] >= mine.first_hop[dest]

        return dest in mine.multi_hop

    def snapshot(self) -> dict:
        return self.strata.snapshot()
