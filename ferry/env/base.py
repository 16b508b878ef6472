"""
Ferry Host Environment Interface

Defines the abstract interface through which the forwarding engine reads
the simulated world: time, live contacts, node motion and buffer sizes.
The discrete-event scheduler and the mobility model live behind it.

Design Principles:
- Read-only queries, answered for the current tick
- The environment owns transfer timing and reports completion back
- No blocking calls
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from ..mesh.contact import Contact
from ..packet.message import HostId

if TYPE_CHECKING:
    from ..routing.scheduler import Transfer


class HostEnvironmentError(Exception):
    """Exception raised for environment-related errors."""
    pass


class HostEnvironment(ABC):
    """
    Abstract base class for host simulations driving the engine.

    Usage:
        env = ConcreteEnvironment()
        engine = ForwardingEngine(env, config)

        # Environment reports events back to the engine
        engine.on_contact_up(a, b)
        engine.tick_all()
        engine.on_transfer_complete(message_id, a, b)
    """

    @abstractmethod
    def now(self) -> float:
        """Current simulated time in seconds."""
        pass

    @abstractmethod
    def current_contacts(self, host: HostId) -> List[Contact]:
        """
        Get the live links of a host.

        Args:
            host: Host id

        Returns:
            Contacts seen from host (contact.local == host)
        """
        pass

    @abstractmethod
    def heading(self, host: HostId) -> Optional[float]:
        """
        Direction of travel in radians within [0, 2*pi).

        Returns:
            Heading, or None when the host is not moving toward a waypoint
        """
        pass

    @abstractmethod
    def speed(self, host: HostId) -> float:
        """Current speed of a host."""
        pass

    @abstractmethod
    def buffer_capacity(self, host: HostId) -> Optional[int]:
        """
        Buffer size of a host in bytes.

        Returns:
            Capacity, or None to use the configured default
        """
        pass

    @abstractmethod
    def start_transfer(self, transfer: 'Transfer') -> None:
        """
        Begin moving a message over a contact.

        The environment calls ForwardingEngine.on_transfer_complete once the
        transfer has finished, passing transfer.link_id so a completion from
        an earlier link instance can be told apart, or on_contact_down if the
        link drops first.

        Args:
            transfer: Transfer that was just scheduled
        """
        pass
