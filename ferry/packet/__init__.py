"""
Ferry Packet Module

Message model and per-host message storage.

Components:
- message.py: Message copies and typed routing state
- digest.py: BLAKE2b digests and id generation
- store.py: Bounded message buffer with eviction
- dedup.py: Log of messages delivered to this host
"""

from .message import (
    HostId,
    Message,
    RoutingState,
    SectorState,
    StateKind,
    StrataState,
)

from .digest import (
    blake2b_digest,
    generate_message_id,
    message_digest,
)

from .store import (
    MessageBuffer,
)

from .dedup import (
    DeliveryLog,
)

__all__ = [
    # Message
    'HostId',
    'Message',
    'RoutingState',
    'SectorState',
    'StateKind',
    'StrataState',
    # Digest
    'blake2b_digest',
    'generate_message_id',
    'message_digest',
    # Store
    'MessageBuffer',
    # Delivery log
    'DeliveryLog',
]
