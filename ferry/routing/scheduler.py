"""
Ferry Transfer Scheduler

Drives one host's forwarding decisions, one tick at a time.

Design:
- At most one transfer per host, sending or receiving
- Direct delivery to a destination always goes first
- Otherwise spreadable copies are paired with contacts admitted by the
  active neighbor filter, in queue order
- Copy counts and policy bookkeeping change only when a transfer completes
"""

import itertools
import logging
import random
from typing import Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field

from ..config import QueueMode, RoutingConfig
from ..env.base import HostEnvironment
from ..errors import MissingReplicationState, StaleTransfer
from ..mesh.contact import Contact
from ..packet.dedup import DeliveryLog
from ..packet.message import HostId, Message
from ..packet.store import MessageBuffer
from .policy import NeighborFilter, make_filter
from .replication import ReplicationController


logger = logging.getLogger("ferry.scheduler")


_transfer_ids = itertools.count(1)


@dataclass
class Transfer:
    """
    A message moving over one contact.
    """
    message: Message            # Sender's copy
    sender: HostId
    receiver: HostId

    # Sender's copy count when the transfer started
    copies_at_start: int

    started_at: float = 0.0
    link_id: int = 0

    # Receiver heading when the transfer started
    peer_heading: Optional[float] = None

    # True when the receiver is the message destination
    is_delivery: bool = False

    transfer_id: int = field(default_factory=lambda: next(_transfer_ids))

    @property
    def message_id(self) -> str:
        return self.message.id

    def involves(self, host: HostId) -> bool:
        return host == self.sender or host == self.receiver


RouterLookup = Callable[[HostId], Optional['Router']]


class Router:
    """
    Forwarding engine state for one host.

    Usage:
        router = Router(host, config, env, lookup=engine.get_router)

        # Every tick
        transfer = router.update()

        # When the environment reports completion
        copy = receiver.message_transferred(transfer)
        router.transfer_done(transfer)
    """

    def __init__(
        self,
        host: HostId,
        config: RoutingConfig,
        env: HostEnvironment,
        lookup: RouterLookup,
        buffer: Optional[MessageBuffer] = None,
        policy: Optional[NeighborFilter] = None,
    ):
        """
        Initialize router.

        Args:
            host: Host id
            config: Routing settings
            env: Host environment
            lookup: Resolves a host id to its router
            buffer: Message buffer (default: sized from config)
            policy: Neighbor filter (default: selected by config)
        """
        self.host = host
        self.config = config
        self.env = env
        self._lookup = lookup

        if buffer is None:
            buffer = MessageBuffer(config.buffer_size, config.eviction_policy)
        if policy is None:
            policy = make_filter(host, config, env)

        self.buffer = buffer
        self.policy = policy
        self.replication = ReplicationController(config)
        self.delivered = DeliveryLog()

        self._random = random.Random(f"{config.seed}:{host}")

        self.outgoing: Optional[Transfer] = None
        self.incoming: Optional[Transfer] = None

        # Statistics
        self._started = 0
        self._relayed = 0
        self._delivered = 0
        self._aborted = 0

    @property
    def is_transferring(self) -> bool:
        return self.outgoing is not None or self.incoming is not None

    def create_message(
        self,
        message_id: str,
        destination: HostId,
        size: int,
        ttl: Optional[float] = None,
    ) -> Message:
        """
        Create a message originating at this host.

        Args:
            message_id: Unique message id
            destination: Destination host id
            size: Size in bytes
            ttl: Time-to-live (default: configured msg_ttl)

        Returns:
            The stored message

        Raises:
            BufferFull: If the message cannot be admitted
        """
        now = self.env.now()
        msg = Message(
            id=message_id,
            source=self.host,
            destination=destination,
            size=size,
            created_at=now,
            ttl=ttl if ttl is not None else self.config.msg_ttl,
            received_at=now,
            copies_left=self.replication.initial_copies,
            state=self.policy.new_state(),
        )
        self.buffer.admit(msg, now)
        logger.debug(f"{self.host}: created {msg}")
        return msg

    def on_contact_up(self, peer_router: 'Router') -> None:
        self.policy.on_contact_up(self, peer_router)

    def on_contact_down(self, peer: HostId) -> None:
        self.policy.on_contact_down(self, peer)

    # -- per-tick decision --

    def update(self) -> Optional[Transfer]:
        """
        Try to start one transfer.

        Returns:
            The started transfer, or None
        """
        if self.is_transferring:
            return None

        if len(self.buffer) == 0:
            return None

        contacts = self._idle_contacts()
        if not contacts:
            return None

        now = self.env.now()

        self.buffer.drop_expired(now)
        if len(self.buffer) == 0:
            return None

        transfer = self._exchange_deliverable(contacts, now)
        if transfer is not None:
            return transfer

        return self._try_spreading(contacts, now)

    def _idle_contacts(self) -> List[Tuple[Contact, 'Router']]:
        """Live contacts whose peers are not transferring."""
        result = []
        for contact in self.env.current_contacts(self.host):
            if not contact.is_up:
                continue
            peer_router = self._lookup(contact.peer)
            if peer_router is None or peer_router.is_transferring:
                continue
            result.append((contact, peer_router))
        return result

    def _exchange_deliverable(
        self,
        contacts: List[Tuple[Contact, 'Router']],
        now: float,
    ) -> Optional[Transfer]:
        """Start a transfer to a message's final recipient, if any is in range."""
        peers = {contact.peer: (contact, peer_router) for contact, peer_router in contacts}

        for msg in self.buffer.deliverable_now(peers):
            if msg.copies_left is None:
                err = MissingReplicationState(msg.id, "no copy count")
                logger.warning(f"{self.host}: dropping message: {err}")
                self.buffer.remove(msg.id)
                continue

            contact, peer_router = peers[msg.destination]
            if peer_router.delivered.check(msg.id):
                # Destination already has it; our copy is of no further use
                self.buffer.remove(msg.id)
                logger.debug(f"{self.host}: {msg.id} already delivered, dropped")
                continue

            return self._start(msg, contact, peer_router, now, is_delivery=True)

        return None

    def _candidates(self, contacts: List[Contact]) -> List[Message]:
        """Spreadable messages worth offering to the admitted contacts."""
        candidates = []
        for msg in self.buffer.with_copies_left(ReplicationController.can_spread):
            try:
                if self.policy.is_candidate(self, msg, contacts):
                    candidates.append(msg)
            except MissingReplicationState as e:
                logger.warning(f"{self.host}: dropping message: {e}")
                self.buffer.remove(msg.id)
        return candidates

    def sort_by_queue_mode(self, messages: List[Message]) -> List[Message]:
        """Order messages by the configured queue discipline."""
        mode = self.config.queue_mode
        if mode == QueueMode.SMALLEST_FIRST:
            return sorted(messages, key=lambda m: (m.size, m.received_at))
        if mode == QueueMode.RANDOM:
            shuffled = list(messages)
            self._random.shuffle(shuffled)
            return shuffled
        return sorted(messages, key=lambda m: m.received_at)

    def _try_spreading(
        self,
        contacts: List[Tuple[Contact, 'Router']],
        now: float,
    ) -> Optional[Transfer]:
        """Pair ordered candidates with admitted contacts and start the first viable one."""
        routers: Dict[HostId, 'Router'] = {c.peer: r for c, r in contacts}

        admitted = self.policy.filter_contacts(self, [c for c, _ in contacts])
        if not admitted:
            return None

        candidates = self.sort_by_queue_mode(self._candidates(admitted))

        for msg in candidates:
            for contact in admitted:
                peer_router = routers[contact.peer]

                if contact.peer == msg.destination:
                    continue  # delivery is decided in _exchange_deliverable
                if peer_router.buffer.has(msg.id) or peer_router.delivered.check(msg.id):
                    continue
                if not self.policy.allows(self, msg, contact, peer_router):
                    continue

                return self._start(msg, contact, peer_router, now, is_delivery=False)

        return None

    def _start(
        self,
        msg: Message,
        contact: Contact,
        peer_router: 'Router',
        now: float,
        is_delivery: bool,
    ) -> Transfer:
        transfer = Transfer(
            message=msg,
            sender=self.host,
            receiver=peer_router.host,
            copies_at_start=self.replication.copies_of(msg),
            started_at=now,
            link_id=contact.link_id,
            peer_heading=self.env.heading(peer_router.host),
            is_delivery=is_delivery,
        )

        self.outgoing = transfer
        peer_router.incoming = transfer
        self.buffer.pin(msg.id)
        self._started += 1

        if is_delivery:
            logger.debug(f"{self.host}: delivering {msg.id} to {peer_router.host}")
        else:
            given, kept = self.replication.split(transfer.copies_at_start)
            logger.debug(
                f"{self.host}: spreading {msg.id} to {peer_router.host} "
                f"({given} copies, keeping {kept})"
            )

        self.env.start_transfer(transfer)
        return transfer

    # -- completion --

    def message_transferred(self, transfer: Transfer) -> Optional[Message]:
        """
        Receive a completed transfer.

        Returns:
            The stored copy, or None if this host was the final recipient

        Raises:
            BufferFull: If the copy cannot be admitted
            MessageExpired: If the copy's TTL ran out in transit
        """
        now = self.env.now()
        msg = transfer.message

        if transfer.is_delivery:
            if self.incoming is transfer:
                self.incoming = None
            if self.delivered.check_and_add(msg.id, now):
                logger.debug(f"{self.host}: duplicate delivery of {msg.id}")
            else:
                logger.info(f"{self.host}: delivered {msg.id} from {msg.source}")
            return None

        copies = self.replication.receiver_copies(transfer.copies_at_start)
        copy = msg.replicate(copies, received_at=now, state=self.policy.new_state())
        self.buffer.admit(copy, now)

        if self.incoming is transfer:
            self.incoming = None
        return copy

    def transfer_done(self, transfer: Transfer) -> None:
        """
        Apply a completed transfer to the sender's copy.

        Raises:
            StaleTransfer: If the copy left the buffer meanwhile
        """
        if self.outgoing is transfer:
            self.outgoing = None
        self.buffer.unpin(transfer.message_id)

        msg = self.buffer.get(transfer.message_id)
        if msg is None:
            raise StaleTransfer(transfer.message_id, "message no longer buffered")

        if transfer.is_delivery:
            self.buffer.remove(msg.id)
            self._delivered += 1
            return

        msg.copies_left = self.replication.sender_copies(self.replication.copies_of(msg))
        self.policy.on_transfer_done(self, msg, transfer)
        self._relayed += 1

    def abort(self, transfer: Transfer) -> None:
        """Forget a transfer without touching any copy count."""
        aborted = False
        if self.outgoing is transfer:
            self.outgoing = None
            self.buffer.unpin(transfer.message_id)
            aborted = True
        if self.incoming is transfer:
            self.incoming = None
            aborted = True
        if aborted:
            self._aborted += 1

    def transfers_with(self, peer: HostId) -> List[Transfer]:
        """In-flight transfers between this host and peer."""
        return [
            t for t in (self.outgoing, self.incoming)
            if t is not None and t.involves(peer)
        ]

    def snapshot(self) -> dict:
        """Inspectable state of this host."""
        return {
            "copies": {m.id: m.copies_left for m in self.buffer},
            "strata": self.policy.snapshot(),
            "delivered": len(self.delivered),
            "transferring": self.is_transferring,
        }

    def get_stats(self) -> dict:
        return {
            "started": self._started,
            "relayed": self._relayed,
            "delivered": self._delivered,
            "aborted": self._aborted,
            "buffer": self.buffer.get_stats(),
            "delivery_log": self.delivered.get_stats(),
        }
