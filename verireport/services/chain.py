"""
Verification chain fingerprints.

A chain fingerprint proves that a given content fingerprint was attested at a
given time without re-hashing the file:

    chain = sha256(content_fingerprint || iso_timestamp [|| previous_chain])

By default only content + timestamp are hashed, so each record is a
standalone attestation. With FF_CHAIN_PRIOR_RECORDS on, the previous record's
chain value is appended as well and successive records form a hash chain.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..core.errors import ValidationError
from .fingerprint import fingerprint_bytes, is_fingerprint


@dataclass(frozen=True)
class Attestation:
    content_fingerprint: str
    chain_fingerprint: str
    verified_at: datetime
    timestamp: str
    previous_chain_fingerprint: Optional[str] = None


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision: 2024-05-01T12:30:45.123Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _check_fingerprint(value: Optional[str], name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{name} must not be empty")
    value = value.strip().lower()
    if not is_fingerprint(value):
        raise ValidationError(
            f"{name} must be a 64-character hex SHA-256 digest",
            {name: value[:80]},
        )
    return value


def build_chain_fingerprint(
    content_fingerprint: str,
    verified_at: datetime,
    previous_chain_fingerprint: Optional[str] = None,
) -> str:
    content_fingerprint = _check_fingerprint(content_fingerprint, "content_fingerprint")
    payload = content_fingerprint + format_timestamp(verified_at)
    if previous_chain_fingerprint:
        payload += _check_fingerprint(previous_chain_fingerprint, "previous_chain_fingerprint")
    return fingerprint_bytes(payload.encode("utf-8"))


def attest(
    content_fingerprint: str,
    verified_at: Optional[datetime] = None,
    previous_chain_fingerprint: Optional[str] = None,
) -> Attestation:
    """Build an immutable attestation for a content fingerprint."""
    verified_at = verified_at or datetime.now(timezone.utc)
    # Truncate to the precision carried by the timestamp string
    verified_at = verified_at.replace(microsecond=(verified_at.microsecond // 1000) * 1000)
    chain = build_chain_fingerprint(content_fingerprint, verified_at, previous_chain_fingerprint)
    return Attestation(
        content_fingerprint=content_fingerprint.strip().lower(),
        chain_fingerprint=chain,
        verified_at=verified_at,
        timestamp=format_timestamp(verified_at),
        previous_chain_fingerprint=previous_chain_fingerprint or None,
    )


def verify_attestation(
    content_fingerprint: str,
    verified_at: datetime,
    chain_fingerprint: str,
    previous_chain_fingerprint: Optional[str] = None,
) -> bool:
    """Recompute a chain fingerprint and compare with the stored value."""
    expected = build_chain_fingerprint(content_fingerprint, verified_at, previous_chain_fingerprint)
    return expected == (chain_fingerprint or "").strip().lower()
