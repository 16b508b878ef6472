"""
Ferry Host Environment Module

Interface through which the engine reads the simulated world.

Components:
- base.py: HostEnvironment abstract base class
- loopback.py: In-memory world for tests and scripted scenarios
  (import from ferry.env.loopback)
"""

from .base import (
    HostEnvironment,
    HostEnvironmentError,
)

__all__ = [
    'HostEnvironment',
    'HostEnvironmentError',
]
