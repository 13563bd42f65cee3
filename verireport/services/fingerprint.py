"""
Content fingerprints. SHA-256 over raw bytes, lower-case hex (64 chars).
"""

import hashlib
import re
from typing import Iterable

FINGERPRINT_LENGTH = 64

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


def fingerprint_bytes(data: bytes) -> str:
    """Digest of a complete byte string."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_chunks(chunks: Iterable[bytes]) -> str:
    """Digest of a chunked byte stream. Same result as hashing the concatenation."""
    digest = hashlib.sha256()
    for chunk in chunks:
        digest.update(chunk)
    return digest.hexdigest()


def is_fingerprint(value: str) -> bool:
    return bool(value) and bool(_FINGERPRINT_RE.match(value))
