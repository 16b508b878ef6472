"""
Ferry Neighbor Filters

The strategy interface the transfer scheduler uses to pick recipients.
Two implementations exist (direction and contact history); configuration
selects one per engine and every host gets its own instance.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from ..config import RoutingConfig, RoutingPolicy
from ..env.base import HostEnvironment
from ..mesh.contact import Contact
from ..packet.message import HostId, Message, RoutingState

if TYPE_CHECKING:
    from .scheduler import Router, Transfer


class NeighborFilter(ABC):
    """
    Abstract base class for neighbor selection policies.

    The scheduler calls, per tick:
        contacts = policy.filter_contacts(router, contacts)
        candidates = [m for m in spreadable if policy.is_candidate(router, m, contacts)]
        ...
        if policy.allows(router, message, contact, peer_router):
            start_transfer(...)

    and after a completed transfer:
        policy.on_transfer_done(router, message, transfer)
    """

    name = "abstract"

    def __init__(self, host: HostId, config: RoutingConfig, env: HostEnvironment):
        """
        Initialize policy for one host.

        Args:
            host: Host owning this policy instance
            config: Routing settings
            env: Host environment for motion and buffer queries
        """
        self.host = host
        self.config = config
        self.env = env

    @abstractmethod
    def new_state(self) -> RoutingState:
        """Policy state attached to a newly created message."""
        pass

    def on_contact_up(self, router: 'Router', peer_router: 'Router') -> None:
        """Update bookkeeping when a link to peer_router's host comes up."""
        pass

    def on_contact_down(self, router: 'Router', peer: HostId) -> None:
        """Update bookkeeping when a link goes down."""
        pass

    @abstractmethod
    def filter_contacts(self, router: 'Router', contacts: List[Contact]) -> List[Contact]:
        """
        Select the contacts eligible to receive spread copies.

        Args:
            router: Local router
            contacts: Live contacts with idle peers

        Returns:
            Admitted contacts, order preserved
        """
        pass

    def is_candidate(self, router: 'Router', message: Message, contacts: List[Contact]) -> bool:
        """Check if a spreadable message is worth offering to any of contacts."""
        return True

    @abstractmethod
    def allows(
        self,
        router: 'Router',
        message: Message,
        contact: Contact,
        peer_router: 'Router',
    ) -> bool:
        """Check if message may be spread over contact."""
        pass

    def on_transfer_done(self, router: 'Router', message: Message, transfer: 'Transfer') -> None:
        """Update bookkeeping on the sender's copy after a completed transfer."""
        pass

    def snapshot(self) -> Optional[dict]:
        """Inspectable per-host state, if the policy keeps any."""
        return None


def make_filter(host: HostId, config: RoutingConfig, env: HostEnvironment) -> NeighborFilter:
    """
    Build the neighbor filter selected by configuration.

    Args:
        host: Host owning the filter
        config: Routing settings
        env: Host environment

    Returns:
        Policy instance for host
    """
    from .direction import DirectionFilter
    from .history import ContactHistoryFilter

    if config.policy == RoutingPolicy.DIRECTION:
        return DirectionFilter(host, config, env)
    return ContactHistoryFilter(host, config, env)
