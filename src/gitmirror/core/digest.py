"""Commit digest helpers.

Git names commits by the hex encoding of a content hash. The hash
algorithm fixes the digest length, which is how a digest is validated.
"""

from __future__ import annotations

import re

# Hex digest length per git object-format
HEX_LENGTHS = {
    "sha1": 40,
    "sha256": 64,
}

DEFAULT_ALGORITHM = "sha1"

# Length of abbreviated digests written into sync trailers
SHORT_LENGTH = 7

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


class DigestError(ValueError):
    """Raised when a string is not a valid digest."""


def parse_digest(text: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Validate a full hex digest and return it in lower case.

    Args:
        text: Hex-encoded digest.
        algorithm: Name of the hash algorithm ("sha1" or "sha256").

    Returns:
        The normalized digest.

    Raises:
        DigestError: If the text is not a digest of the algorithm's length.
    """
    try:
        length = HEX_LENGTHS[algorithm]
    except KeyError:
        raise DigestError(f"unknown hash algorithm {algorithm!r}") from None
    if len(text) != length or not _HEX_RE.match(text):
        raise DigestError(f"invalid {algorithm} digest {text!r}")
    return text.lower()


def is_hex(text: str) -> bool:
    """Check whether text is a non-empty hex string."""
    return bool(_HEX_RE.match(text))


def short(digest: str) -> str:
    """Abbreviate a digest for trailers and log messages."""
    return digest[:SHORT_LENGTH]
