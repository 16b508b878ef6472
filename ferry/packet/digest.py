"""
Ferry Message Digests

Fixed-length digests of message identifiers, wrapping the cryptography
library's BLAKE2b. Digests key the delivery log and back generated ids;
they carry no authentication.
"""

import os
from typing import Hashable, Optional

from cryptography.hazmat.primitives import hashes

from .. import MESSAGE_DIGEST_LENGTH


# BLAKE2b in the cryptography library only produces 64-byte digests
BLAKE2B_DIGEST_SIZE = 64


def blake2b_digest(
    data: bytes,
    length: int = MESSAGE_DIGEST_LENGTH,
    person: Optional[bytes] = None,
) -> bytes:
    """
    Compute a BLAKE2b digest truncated to length bytes.

    Args:
        data: Data to hash
        length: Output size in bytes (1-64)
        person: Optional personalization prefix (up to 16 bytes)

    Returns:
        bytes: Digest

    Raises:
        ValueError: If parameters are invalid
    """
    if not 1 <= length <= BLAKE2B_DIGEST_SIZE:
        raise ValueError("Digest length must be 1-64 bytes")

    if person is not None and len(person) > 16:
        raise ValueError("Personalization must be at most 16 bytes")

    hasher = hashes.Hash(hashes.BLAKE2b(BLAKE2B_DIGEST_SIZE))

    if person is not None:
        hasher.update(person.ljust(16, b'\x00'))

    hasher.update(data)
    return hasher.finalize()[:length]


def message_digest(message_id: str) -> bytes:
    """Digest of a message id, used as delivery log key."""
    return blake2b_digest(message_id.encode("utf-8"), person=b"ferry-delivered")


def generate_message_id(
    source: Hashable,
    destination: Hashable,
    created_at: float,
) -> str:
    """
    Generate a unique message id.

    id = hex(BLAKE2b(source || destination || created_at || random))

    Args:
        source: Originating host id
        destination: Destination host id
        created_at: Simulated creation time

    Returns:
        str: 32-character hex id
    """
    data = b"|".join((
        str(source).encode("utf-8"),
        str(destination).encode("utf-8"),
        repr(float(created_at)).encode("ascii"),
        os.urandom(16),
    ))
    return blake2b_digest(data, person=b"ferry-msgid").hex()
