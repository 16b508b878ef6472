"""
Ferry Routing Module

Replication, neighbor selection and per-host transfer scheduling.

Components:
- replication.py: Copy-count arithmetic (binary / single-copy)
- policy.py: NeighborFilter strategy interface
- direction.py: Direction-aware spreading
- history.py: Contact-history and buffer-pressure forwarding
- scheduler.py: Per-host router driving one tick at a time
"""

from .replication import (
    ReplicationController,
    ReplicationMode,
)

from .policy import (
    NeighborFilter,
    make_filter,
)

from .direction import (
    DirectionFilter,
    sector_of,
)

from .history import (
    ContactHistoryFilter,
    Strata,
    buffer_ratio,
    running_high,
    running_low,
)

from .scheduler import (
    Router,
    Transfer,
)

__all__ = [
    # Replication
    'ReplicationController',
    'ReplicationMode',
    # Policy
    'NeighborFilter',
    'make_filter',
    # Direction
    'DirectionFilter',
    'sector_of',
    # Contact history
    'ContactHistoryFilter',
    'Strata',
    'buffer_ratio',
    'running_high',
    'running_low',
    # Scheduler
    'Router',
    'Transfer',
]
