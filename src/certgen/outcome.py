"""Reconciliation outcomes and the shared reuse check."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .pki import KeyCertPair


class Outcome(str, Enum):
    """What reconciliation did with one identity."""
    REUSED = "reused"
    REGENERATED = "regenerated"
    REJECTED = "rejected"


def staleness_reason(
    pair: KeyCertPair,
    want_fp: str,
    now: datetime,
    renew_before: timedelta,
) -> Optional[str]:
    """
    Decide whether a stored pair can be kept.

    Args:
        pair (KeyCertPair): Parsed stored material.
        want_fp (str): Fingerprint of the desired configuration.
        now (datetime): Current time (UTC).
        renew_before (timedelta): Regeneration window before expiry.

    Returns:
        str | None: Why the pair must be regenerated, or None if it can be reused.
    """
    stored_fp = pair.fingerprint
    if stored_fp is None:
        return "certificate carries no configuration fingerprint"
    if stored_fp != want_fp:
        return "configuration changed"
    if pair.cert.not_valid_before_utc > now:
        return "certificate is not yet valid"
    if pair.not_after <= now:
        return "certificate expired"
    if pair.not_after <= now + renew_before:
        return f"certificate expires within {renew_before.days} day(s)"
    return None
