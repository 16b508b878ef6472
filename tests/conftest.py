"""
Shared pytest fixtures for Ferry tests.

Provides:
- Routing config and loopback world factories
- A three-host world with hosts heading east, north and standing still
"""

import pytest

from ferry.config import RoutingConfig, RoutingPolicy
from ferry.env.loopback import LoopbackConfig, LoopbackWorld


# Waypoints seen from the origin
EAST = (10.0, 0.0)      # heading 0, sector 0 of 4
NORTH = (0.0, 10.0)     # heading pi/2, sector 1 of 4
WEST = (-10.0, 0.0)     # heading pi, sector 2 of 4
SOUTH = (0.0, -10.0)    # heading 3pi/2, sector 3 of 4


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_world():
    """
    Build a loopback world.

    Keyword arguments go to RoutingConfig, except ``loopback`` which is a
    LoopbackConfig.
    """
    def _make(loopback: LoopbackConfig = None, **routing) -> LoopbackWorld:
        return LoopbackWorld(RoutingConfig(**routing), loopback)
    return _make


@pytest.fixture
def direction_world(make_world):
    """a heads east, b heads north, c has no waypoint."""
    world = make_world(initial_copies=6, binary_mode=True, policy=RoutingPolicy.DIRECTION)
    world.add_host("a", waypoint=EAST, speed=1.0)
    world.add_host("b", waypoint=NORTH, speed=1.0)
    world.add_host("c")
    return world


@pytest.fixture
def history_world(make_world):
    """Three stationary hosts under contact-history routing."""
    world = make_world(
        initial_copies=6,
        binary_mode=True,
        policy=RoutingPolicy.CONTACT_HISTORY,
        mule_buffer_threshold=10_000,
        buffer_size=1_000,
    )
    world.add_host("a")
    world.add_host("b")
    world.add_host("c")
    return world


def copies(world: LoopbackWorld, host, message_id):
    """Copy count of message_id at host, or None if host does not hold it."""
    msg = world.engine.router(host).buffer.get(message_id)
    return msg.copies_left if msg is not None else None
