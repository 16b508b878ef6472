"""
Ferry Loopback World

An in-memory host environment that drives a ForwardingEngine in the same
process.

Useful for:
- Unit testing
- Integration testing
- Scripted scenarios (see ferry.scenario)

Features:
- Explicit contacts (connect / disconnect)
- Static positions with an optional next waypoint per host
- Fixed transfer duration in ticks
"""

import itertools
from typing import Dict, FrozenSet, List, Optional, Tuple
from dataclasses import dataclass, field

from ..config import RoutingConfig
from ..engine import EvictionCallback, ForwardingEngine
from ..mesh.contact import Contact, Coord, heading_between
from ..packet.message import HostId
from ..routing.scheduler import Router, Transfer
from .base import HostEnvironment, HostEnvironmentError


@dataclass
class LoopbackConfig:
    """Additional configuration for the loopback world."""

    # Simulated seconds per tick
    tick_seconds: float = 1.0

    # Ticks between starting and completing a transfer
    transfer_ticks: int = 1

    def __post_init__(self):
        if self.tick_seconds <= 0:
            raise ValueError(f"tick_seconds must be positive, got {self.tick_seconds}")
        if self.transfer_ticks < 1:
            raise ValueError(f"transfer_ticks must be at least 1, got {self.transfer_ticks}")


@dataclass
class LoopbackHost:
    """Position and motion of one host."""
    host_id: HostId
    position: Coord = (0.0, 0.0)
    waypoint: Optional[Coord] = None
    speed: float = 0.0
    buffer_size: Optional[int] = None


@dataclass
class _PendingTransfer:
    due_tick: int
    transfer: Transfer
    link: FrozenSet[HostId] = field(default_factory=frozenset)


class LoopbackWorld(HostEnvironment):
    """
    Virtual world for testing.

    Usage:
        world = LoopbackWorld(RoutingConfig(initial_copies=6))
        world.add_host("a", position=(0, 0), waypoint=(10, 0), speed=1.0)
        world.add_host("b", position=(0, 0), waypoint=(0, 10), speed=1.0)

        world.engine.create_message("a", "m1", destination="c", size=100)
        world.connect("a", "b")
        world.advance(2)
    """

    def __init__(
        self,
        config: RoutingConfig,
        loopback_config: Optional[LoopbackConfig] = None,
        on_evict: Optional[EvictionCallback] = None,
    ):
        """
        Initialize loopback world.

        Args:
            config: Routing settings for the engine
            loopback_config: Optional loopback-specific configuration
            on_evict: Called with (host, message) on buffer eviction
        """
        self._loopback_config = loopback_config or LoopbackConfig()
        self._tick = 0
        self._hosts: Dict[HostId, LoopbackHost] = {}

        # Live links: {a, b} -> (up_since, link_id)
        self._links: Dict[FrozenSet[HostId], Tuple[float, int]] = {}
        self._link_ids = itertools.count(1)

        self._pending: List[_PendingTransfer] = []

        self.engine = ForwardingEngine(self, config, on_evict=on_evict)

    @property
    def tick_count(self) -> int:
        return self._tick

    def _host(self, host: HostId) -> LoopbackHost:
        try:
            return self._hosts[host]
        except KeyError:
            raise HostEnvironmentError(f"Unknown host {host!r}")

    # -- world setup --

    def add_host(
        self,
        host: HostId,
        position: Coord = (0.0, 0.0),
        waypoint: Optional[Coord] = None,
        speed: float = 0.0,
        buffer_size: Optional[int] = None,
    ) -> Router:
        """
        Add a host to the world and the engine.

        Returns:
            The host's router
        """
        if host in self._hosts:
            raise HostEnvironmentError(f"Host {host!r} already exists")

        self._hosts[host] = LoopbackHost(
            host_id=host,
            position=tuple(position),
            waypoint=tuple(waypoint) if waypoint is not None else None,
            speed=speed,
            buffer_size=buffer_size,
        )
        return self.engine.add_host(host)

    def move(
        self,
        host: HostId,
        position: Optional[Coord] = None,
        waypoint: Optional[Coord] = None,
        speed: Optional[float] = None,
        stop: bool = False,
    ) -> None:
        """Change a host's position, next waypoint or speed."""
        h = self._host(host)
        if position is not None:
            h.position = tuple(position)
        if waypoint is not None:
            h.waypoint = tuple(waypoint)
        if speed is not None:
            h.speed = speed
        if stop:
            h.waypoint = None
            h.speed = 0.0

    def connect(self, a: HostId, b: HostId) -> None:
        """Bring a link up between a and b."""
        self._host(a)
        self._host(b)
        if a == b:
            raise HostEnvironmentError("A host cannot connect to itself")

        link = frozenset((a, b))
        if link in self._links:
            return

        self._links[link] = (self.now(), next(self._link_ids))
        self.engine.on_contact_up(a, b)

    def disconnect(self, a: HostId, b: HostId) -> None:
        """Take the link between a and b down, aborting its transfers."""
        link = frozenset((a, b))
        if self._links.pop(link, None) is None:
            return

        self._pending = [p for p in self._pending if p.link != link]
        self.engine.on_contact_down(a, b)

    def is_connected(self, a: HostId, b: HostId) -> bool:
        return frozenset((a, b)) in self._links

    # -- HostEnvironment --

    def now(self) -> float:
        return self._tick * self._loopback_config.tick_seconds

    def current_contacts(self, host: HostId) -> List[Contact]:
        contacts = []
        for link, (up_since, link_id) in self._links.items():
            if host not in link:
                continue
            (peer,) = link - {host}
            contacts.append(Contact(local=host, peer=peer, up_since=up_since, link_id=link_id))
        contacts.sort(key=lambda c: c.link_id)
        return contacts

    def heading(self, host: HostId) -> Optional[float]:
        h = self._host(host)
        if h.waypoint is None:
            return None
        return heading_between(h.position, h.waypoint)

    def speed(self, host: HostId) -> float:
        return self._host(host).speed

    def buffer_capacity(self, host: HostId) -> Optional[int]:
        return self._host(host).buffer_size

    def start_transfer(self, transfer: Transfer) -> None:
        self._pending.append(_PendingTransfer(
            due_tick=self._tick + self._loopback_config.transfer_ticks,
            transfer=transfer,
            link=frozenset((transfer.sender, transfer.receiver)),
        ))

    # -- time --

    def advance(self, ticks: int = 1) -> List[Transfer]:
        """
        Run ticks: complete due transfers, then let every host decide.

        Returns:
            Transfers started during these ticks
        """
        started = []
        for _ in range(ticks):
            self._tick += 1

            due = [p for p in self._pending if p.due_tick <= self._tick]
            self._pending = [p for p in self._pending if p.due_tick > self._tick]
            for pending in due:
                t = pending.transfer
                self.engine.on_transfer_complete(t.message_id, t.sender, t.receiver, t.link_id)

            started.extend(self.engine.tick_all())
        return started

    def pending_transfers(self) -> List[Transfer]:
        return [p.transfer for p in self._pending]
