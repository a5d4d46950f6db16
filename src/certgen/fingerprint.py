"""
Content fingerprints of authority and leaf specifications.

A fingerprint is the SHA-256 of a canonical JSON rendering of the fields that
end up in a certificate. Stored certificates carry the fingerprint they were
issued for, so a changed configuration is detected by comparing digests.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Union

from .config import AuthoritySpec, LeafSpec, NetworkIdentity
from .errors import ConfigurationError

Fingerprint = str


def _identity_fields(identity: NetworkIdentity) -> Dict[str, Any]:
    return {
        "organization": identity.name.strip(),
        "email": identity.email.strip(),
        "country": (identity.country or "").strip().upper(),
        "province": (identity.province or "").strip(),
    }


def _digest(doc: Dict[str, Any]) -> Fingerprint:
    blob = json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def canonical_authority(spec: AuthoritySpec) -> Dict[str, Any]:
    """Semantic fields of an authority spec in canonical form."""
    if not spec.name.strip():
        raise ConfigurationError("Authority name must not be empty")
    return {
        "kind": "authority",
        "name": spec.name.strip(),
        "validity_days": int(spec.validity_days),
        "subject": _identity_fields(spec.identity),
    }


def canonical_leaf(spec: LeafSpec) -> Dict[str, Any]:
    """Semantic fields of a leaf spec; alternate names sorted and deduplicated."""
    if not spec.primary_name.strip():
        raise ConfigurationError("Site name must not be empty")
    alt = sorted({f"{a.kind}:{a.value}" for a in spec.san_entries})
    return {
        "kind": "leaf",
        "name": spec.primary_name.strip().lower(),
        "display_name": spec.display_name.strip(),
        "validity_days": int(spec.validity_days),
        "alt_names": alt,
        "subject": _identity_fields(spec.identity),
    }


def authority_fingerprint(spec: AuthoritySpec) -> Fingerprint:
    return _digest(canonical_authority(spec))


def leaf_fingerprint(spec: LeafSpec, authority_fp: Fingerprint) -> Fingerprint:
    """
    Fingerprint of a leaf bound to the authority that signs it.

    The authority fingerprint is part of the hashed document, so rotating the
    authority changes every leaf fingerprint even when the leaf spec is
    unchanged.

    Args:
        spec (LeafSpec): Leaf specification.
        authority_fp (Fingerprint): Fingerprint of the signing authority.

    Returns:
        Fingerprint: Hex SHA-256 digest.
    """
    doc = canonical_leaf(spec)
    doc["authority"] = authority_fp
    return _digest(doc)


def fingerprint(spec: Union[AuthoritySpec, LeafSpec]) -> Fingerprint:
    """Fingerprint of a spec on its own, without any parent binding."""
    if isinstance(spec, AuthoritySpec):
        return authority_fingerprint(spec)
    if isinstance(spec, LeafSpec):
        return _digest(canonical_leaf(spec))
    raise TypeError(f"Cannot fingerprint {type(spec).__name__}")
