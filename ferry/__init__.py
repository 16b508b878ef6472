"""
Ferry - Controlled-Replication Forwarding for Opportunistic Networks

The forwarding core of a delay-tolerant network: for every contact between
two nodes it decides which messages to offer, how many copies each side
keeps, and which neighbors are eligible recipients.

This package contains:
- packet/    : Messages, the bounded message buffer, delivery log
- mesh/      : Contacts and heading derivation
- routing/   : Replication, neighbor filters, transfer scheduling
- env/       : Host environment interface and loopback harness
- engine.py  : Engine facade driven by the host simulation
- scenario.py: Scripted scenario files for the loopback harness
"""

__version__ = "0.1.0"
__author__ = "Ferry Project"

# Core constants
MAX_DIRECTION_COEFFICIENT = 8
DEFAULT_MULE_BUFFER_THRESHOLD = 1_000_000_000  # bytes
MESSAGE_DIGEST_LENGTH = 16  # bytes
