"""One-time pickup codes: generation, comparison and the expiry policy."""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

OTP_LENGTH = 6


def generate_otp() -> str:
    """Uniform over 000000-999999."""
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def otp_matches(stored: Optional[str], candidate: str) -> bool:
    if not stored or not candidate:
        return False
    return hmac.compare_digest(stored.encode(), candidate.strip().encode())


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def otp_expired(
    generated_at: Optional[datetime],
    ttl_minutes: Optional[int],
    now: datetime,
) -> bool:
    """False whenever expiry is disabled (``ttl_minutes is None``)."""
    if ttl_minutes is None or generated_at is None:
        return False
    return as_utc(now) - as_utc(generated_at) > timedelta(minutes=ttl_minutes)
