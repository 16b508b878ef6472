"""
Ferry Contacts

A contact is a live link between two hosts that are in range of each
other. It is created by the host environment when the hosts meet and torn
down when they separate; at most one transfer runs over it at a time.
"""

import math
from typing import Optional, Tuple
from dataclasses import dataclass, field

from ..packet.message import HostId


Coord = Tuple[float, float]

TWO_PI = 2 * math.pi


@dataclass
class Contact:
    """
    One side's view of a link.
    """
    local: HostId
    peer: HostId

    # Simulated time the link came up
    up_since: float = 0.0

    is_up: bool = True

    # Identifies this particular link instance; a reconnect gets a new one
    link_id: int = field(default=0, compare=False)


def heading_between(origin: Coord, target: Coord) -> Optional[float]:
    """
    Bearing from origin toward target, in radians within [0, 2*pi).

    Args:
        origin: Current position (x, y)
        target: Next waypoint (x, y)

    Returns:
        Heading, or None if the points coincide (no direction of travel)
    """
    rise = target[1] - origin[1]
    run = target[0] - origin[0]

    if rise == 0 and run == 0:
        return None

    heading = math.atan2(rise, run)
    if heading < 0:
        heading += TWO_PI

    # atan2 of a tiny negative rise can round up to exactly 2*pi
    if heading >= TWO_PI:
        heading = 0.0

    return heading
