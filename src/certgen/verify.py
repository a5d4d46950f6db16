"""
Read-only audit of the material in an output directory.

This is the mirror of the reconciliation driver: it never writes, and raises
VerificationError on the first inconsistency between the configuration and
what is on disk.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .authority import AuthorityResult
from .config import Config, LeafSpec
from .errors import VerificationError
from .fingerprint import authority_fingerprint, leaf_fingerprint
from .outcome import Outcome
from .pki import KeyCertPair, parse_pair, utcnow
from .store import KeyMaterialStore

LOGGER = logging.getLogger(__name__)


# ---------- helpers ----------

def _assert(cond: bool, msg: str) -> None:
    """
    Raise VerificationError instead of AssertionError.

    Args:
        cond (bool): Condition that must be true.
        msg (str): Error message if condition fails.
    """
    if not cond:
        raise VerificationError(msg)


def _name_str(name: x509.Name) -> str:
    """Render a Name as 'CN=...,O=...' for error messages."""
    return name.rfc4514_string()


def _san_values(cert: x509.Certificate) -> set[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return set()
    dns = {f"dns:{v}" for v in san.get_values_for_type(x509.DNSName)}
    ips = {f"ip:{v}" for v in san.get_values_for_type(x509.IPAddress)}
    return dns | ips


def _eku_contains(cert: x509.Certificate, *oids) -> bool:
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        return all(oid in eku for oid in oids)
    except x509.ExtensionNotFound:
        return False


def _extension(cert: x509.Certificate, ext_class, owner: str):
    """Return the value of a required extension, or fail verification."""
    try:
        return cert.extensions.get_extension_for_class(ext_class).value
    except x509.ExtensionNotFound as e:
        raise VerificationError(f"{owner} has no {ext_class.__name__} extension") from e


def _load(store: KeyMaterialStore, name: str) -> KeyCertPair:
    _assert(store.exists(name), f"Missing key material for {name} in {store.directory}")
    return parse_pair(name, store.load(name))


# ---------- checks ----------

def verify_authority(pair: KeyCertPair, config: Config, now: datetime) -> None:
    """
    Verify the authority certificate.

    Checks:
      - Self-signed (issuer == subject, signature verifies with its own key).
      - BasicConstraints CA:TRUE and KeyUsage keyCertSign.
      - Embedded fingerprint matches the configured authority.
      - Not expired.

    Raises:
        VerificationError: On any mismatch.
    """
    cert = pair.cert
    name = config.authority.name
    _assert(cert.issuer == cert.subject, f"{name} must be self-signed (issuer==subject)")
    try:
        cert.verify_directly_issued_by(cert)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise VerificationError(f"{name} self-signature does not verify: {e}") from e
    bc = _extension(cert, x509.BasicConstraints, name)
    _assert(bc.ca, f"{name} BasicConstraints should be CA:TRUE")
    ku = _extension(cert, x509.KeyUsage, name)
    _assert(ku.key_cert_sign, f"{name} KeyUsage must allow certificate signing")
    _assert(pair.fingerprint == authority_fingerprint(config.authority),
            f"{name} was issued for a different configuration")
    _assert(pair.not_after > now, f"{name} expired on {pair.not_after}")


def verify_site(pair: KeyCertPair, site: LeafSpec, authority: AuthorityResult, now: datetime) -> None:
    """
    Verify one site certificate against the authority.

    Checks:
      - Issuer equals the authority subject and the signature verifies.
      - "not after" does not exceed the authority's.
      - Common name, SAN entries and serverAuth EKU match the site configuration.
      - Embedded fingerprint matches the site bound to this authority.
      - Not expired.

    Raises:
        VerificationError: On any mismatch.
    """
    ca = authority.pair
    cert = pair.cert
    name = site.primary_name
    _assert(cert.issuer == ca.cert.subject,
            f"{name} issuer {_name_str(cert.issuer)} does not match authority {_name_str(ca.cert.subject)}")
    try:
        cert.verify_directly_issued_by(ca.cert)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise VerificationError(f"{name} is not signed by the authority: {e}") from e
    _assert(pair.not_after <= ca.not_after, f"{name} outlives its authority")
    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    _assert(bool(cn) and cn[0].value == site.display_name,
            f"{name} subject mismatch: {_name_str(cert.subject)}")
    expected = {f"{a.kind}:{a.value}" for a in site.san_entries}
    _assert(_san_values(cert) == expected, f"{name} SAN entries do not match configuration")
    _assert(_eku_contains(cert, ExtendedKeyUsageOID.SERVER_AUTH), f"{name} EKU must include serverAuth")
    _assert(pair.fingerprint == leaf_fingerprint(site, authority.signing_fingerprint),
            f"{name} was issued for a different configuration")
    _assert(pair.not_after > now, f"{name} expired on {pair.not_after}")


# ---------- wrapper ----------

def verify_all(
    config: Config,
    output_dir: str,
    *,
    sites: Iterable[str] | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """
    Run the full verification suite against an output directory.

    Args:
        config (Config): Configuration the material should reflect.
        output_dir (str): Directory holding the .key/.crt files.
        sites (Iterable[str] | None): Restrict site checks to these identifiers.
        clock (callable): Returns the current UTC time.

    Raises:
        VerificationError: On the first failed check.
        StorageError: If a file is unreadable or corrupt.
    """
    store = KeyMaterialStore(output_dir)
    now = clock()

    ca_pair = _load(store, config.authority.name)
    verify_authority(ca_pair, config, now)
    authority = AuthorityResult(
        config.authority.name, authority_fingerprint(config.authority), Outcome.REUSED, pair=ca_pair,
    )
    LOGGER.info("Authority %s verified", config.authority.name)

    wanted = set(sites) if sites is not None else None
    for site in config.sites:
        if wanted is not None and site.primary_name not in wanted:
            continue
        verify_site(_load(store, site.primary_name), site, authority, now)
        LOGGER.info("Site %s verified", site.primary_name)
