"""
Ferry Mesh Module

Links between hosts and the geometry used to reason about them.

Components:
- contact.py: Contacts and heading derivation
"""

from .contact import (
    Contact,
    Coord,
    heading_between,
)

__all__ = [
    'Contact',
    'Coord',
    'heading_between',
]
