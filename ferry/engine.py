"""
Ferry Forwarding Engine

The surface the host simulation drives. Owns one router per host and
turns environment events into router calls.

The engine processes:
- Contact up/down events
- Per-tick forwarding decisions
- Transfer completions
- Message creation by the application layer

No error raised while handling an event escapes to the caller, apart from
admission failures on create_message, which the caller decides about.
"""

import functools
import logging
from typing import Callable, Dict, List, Optional

from .config import RoutingConfig
from .env.base import HostEnvironment
from .errors import BufferFull, FerryError, MessageExpired, StaleTransfer
from .packet.message import HostId, Message
from .packet.store import MessageBuffer
from .routing.scheduler import Router, Transfer


logger = logging.getLogger("ferry.engine")


EvictionCallback = Callable[[HostId, Message], None]


class ForwardingEngine:
    """
    Controlled-replication forwarding for a set of hosts.

    Usage:
        engine = ForwardingEngine(env, config)
        engine.add_host("a")
        engine.add_host("b")

        engine.create_message("a", "m1", destination="b", size=1000)
        engine.on_contact_up("a", "b")
        [transfer] = engine.tick_all()
        engine.on_transfer_complete("m1", "a", "b", link_id=transfer.link_id)
    """

    def __init__(
        self,
        env: HostEnvironment,
        config: RoutingConfig,
        on_evict: Optional[EvictionCallback] = None,
    ):
        """
        Initialize engine.

        Args:
            env: Host environment answering world queries
            config: Routing settings shared by every host
            on_evict: Called with (host, message) when a buffer evicts a message
        """
        self.env = env
        self.config = config
        self._on_evict = on_evict
        self._routers: Dict[HostId, Router] = {}

    @property
    def hosts(self) -> List[HostId]:
        return list(self._routers)

    def add_host(self, host: HostId) -> Router:
        """
        Register a host.

        Returns:
            The host's router
        """
        if host in self._routers:
            raise ValueError(f"Host {host!r} already registered")

        capacity = self.env.buffer_capacity(host)
        buffer = MessageBuffer(
            capacity if capacity is not None else self.config.buffer_size,
            self.config.eviction_policy,
            on_evict=functools.partial(self._evicted, host),
        )
        router = Router(host, self.config, self.env, lookup=self.get_router, buffer=buffer)
        self._routers[host] = router
        logger.debug(f"Added host {host!r} ({buffer.capacity} byte buffer, {router.policy.name})")
        return router

    def _evicted(self, host: HostId, msg: Message) -> None:
        logger.debug(f"{host!r}: evicted {msg.id}")
        if self._on_evict is not None:
            self._on_evict(host, msg)

    def get_router(self, host: HostId) -> Optional[Router]:
        return self._routers.get(host)

    def router(self, host: HostId) -> Router:
        """
        Get a host's router.

        Raises:
            KeyError: If the host is unknown
        """
        try:
            return self._routers[host]
        except KeyError:
            raise KeyError(f"Unknown host {host!r}")

    def create_message(
        self,
        host: HostId,
        message_id: str,
        destination: HostId,
        size: int,
        ttl: Optional[float] = None,
    ) -> Message:
        """
        Create a message at host.

        Raises:
            BufferFull: If the host buffer cannot take it
        """
        return self.router(host).create_message(message_id, destination, size, ttl)

    # -- environment events --

    def on_contact_up(self, a: HostId, b: HostId) -> None:
        """Both hosts learn from each other."""
        router_a, router_b = self.router(a), self.router(b)
        try:
            router_a.on_contact_up(router_b)
            router_b.on_contact_up(router_a)
        except FerryError as e:
            logger.warning(f"Contact {a!r}<->{b!r}: {e}")

    def on_contact_down(self, a: HostId, b: HostId) -> None:
        """Abort transfers over the link; nothing else changes."""
        router_a, router_b = self.router(a), self.router(b)

        for transfer in router_a.transfers_with(b):
            router_a.abort(transfer)
            router_b.abort(transfer)
            logger.debug(f"Aborted {transfer.message_id} {transfer.sender!r}->{transfer.receiver!r}")

        router_a.on_contact_down(b)
        router_b.on_contact_down(a)

    def on_transfer_complete(
        self,
        message_id: str,
        sender: HostId,
        receiver: HostId,
        link_id: Optional[int] = None,
    ) -> Optional[Message]:
        """
        Apply a finished transfer.

        A completion carrying a link_id that differs from the one the
        transfer started on belongs to an earlier link instance and is
        ignored.

        Returns:
            The receiver's new copy, or None if delivered to the destination
            or if the transfer was stale
        """
        sender_router = self.router(sender)
        receiver_router = self.router(receiver)

        transfer = sender_router.outgoing
        if (
            transfer is None
            or transfer.message_id != message_id
            or transfer.receiver != receiver
        ):
            logger.debug(f"No transfer of {message_id} {sender!r}->{receiver!r} in flight")
            return None

        if link_id is not None and link_id != transfer.link_id:
            logger.debug(
                f"Ignoring completion of {message_id} over link {link_id}, "
                f"transfer runs on link {transfer.link_id}"
            )
            return None

        try:
            return self._complete(transfer, sender_router, receiver_router)
        except StaleTransfer as e:
            logger.debug(str(e))
        except (BufferFull, MessageExpired) as e:
            logger.info(f"{receiver!r} refused {message_id}: {e}")
        except FerryError as e:
            logger.warning(f"Transfer of {message_id} failed: {e}")

        sender_router.abort(transfer)
        receiver_router.abort(transfer)
        return None

    def _complete(self, transfer: Transfer, sender: Router, receiver: Router) -> Optional[Message]:
        if not sender.buffer.has(transfer.message_id):
            raise StaleTransfer(transfer.message_id, "evicted from sender")

        copy = receiver.message_transferred(transfer)
        sender.transfer_done(transfer)
        return copy

    # -- ticks --

    def tick(self, host: HostId) -> Optional[Transfer]:
        """Run one forwarding decision for host."""
        router = self.router(host)
        try:
            return router.update()
        except FerryError as e:
            logger.warning(f"{host!r}: tick failed: {e}")
            return None

    def tick_all(self) -> List[Transfer]:
        """Run one forwarding decision for every host, in registration order."""
        started = []
        for host in list(self._routers):
            transfer = self.tick(host)
            if transfer is not None:
                started.append(transfer)
        return started

    def snapshot(self) -> Dict[HostId, dict]:
        """Per-host copies and strata, for tests and observability."""
        return {host: router.snapshot() for host, router in self._routers.items()}
