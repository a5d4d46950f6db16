"""
Issuance of server (leaf) certificates signed by the authority.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509 import (
    AuthorityKeyIdentifier,
    BasicConstraints,
    ExtendedKeyUsage,
    KeyUsage,
    SubjectAlternativeName,
    SubjectKeyIdentifier,
)
from cryptography.x509.oid import ExtendedKeyUsageOID

from .authority import AuthorityResult
from .config import LeafSpec, Policy
from .errors import CryptoError
from .fingerprint import Fingerprint, leaf_fingerprint
from .outcome import Outcome, staleness_reason
from .pki import KeyCertPair, fingerprint_extension, generate_key, parse_pair, subject_name, utcnow
from .store import KeyMaterialStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafResult:
    """
    Outcome of reconciling one site.

    Attributes:
        name (str): Site identifier (artifact name).
        fingerprint (Fingerprint): Composite fingerprint of the site and its authority.
        outcome (Outcome): REUSED or REGENERATED.
        reason (str): Why the certificate was (re)issued (empty when reused).
        pair (KeyCertPair | None): Site key and certificate; None in a dry run that would issue.
    """
    name: str
    fingerprint: Fingerprint
    outcome: Outcome
    reason: str = ""
    pair: Optional[KeyCertPair] = None


def build_leaf_cert(
    key: rsa.RSAPrivateKey,
    spec: LeafSpec,
    authority: KeyCertPair,
    fp: Fingerprint,
    now: datetime,
) -> x509.Certificate:
    """
    Create a TLS server certificate signed by the authority.

    Args:
        key (RSAPrivateKey): The site's new private key.
        spec (LeafSpec): Names and validity of the site.
        authority (KeyCertPair): Signing key and certificate.
        fp (Fingerprint): Composite fingerprint to embed.
        now (datetime): Start of the validity window.

    Returns:
        x509.Certificate: Leaf certificate whose issuer is the authority's subject.

    Raises:
        CryptoError: If signing fails.
    """
    # A leaf never outlives the authority that signed it
    not_after = min(now + timedelta(days=spec.validity_days), authority.not_after)
    if not_after < now + timedelta(days=spec.validity_days):
        LOGGER.info("Validity of %s clamped to the authority's expiry (%s)", spec.primary_name, not_after)

    # Build the end-entity certificate (TLS server, not a CA)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject_name(spec.identity, spec.display_name, unit=spec.display_name))  # CN is the display name
        .issuer_name(authority.cert.subject)                   # Link to the authority's subject
        .public_key(key.public_key())                          # Embed the site's public key
        .serial_number(x509.random_serial_number())            # Random 159-bit serial
        .not_valid_before(now)
        .not_valid_after(not_after)
        .add_extension(BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            # Primary name first, then alternate names (IP or DNS)
            SubjectAlternativeName([alt.to_general_name() for alt in spec.san_entries]),
            critical=False,
        )
        .add_extension(
            # Tie the leaf to the authority's key for chain building
            AuthorityKeyIdentifier.from_issuer_public_key(authority.key.public_key()),
            critical=False,
        )
        .add_extension(SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(KeyUsage(
            digital_signature=True,  # TLS handshake signatures
            content_commitment=False,
            key_encipherment=True,   # RSA key exchange
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=False,
            crl_sign=False,
            encipher_only=False,
            decipher_only=False,
        ), critical=True)
        .add_extension(ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)  # TLS server only
        .add_extension(fingerprint_extension(fp), critical=False)  # Site + authority this leaf was issued for
    )
    try:
        return builder.sign(private_key=authority.key, algorithm=hashes.SHA256())
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Signing certificate for {spec.primary_name} failed: {e}") from e


def _signed_by(cert: x509.Certificate, authority: KeyCertPair) -> bool:
    try:
        cert.verify_directly_issued_by(authority.cert)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


class LeafIssuer:
    """
    Issues site certificates, leaving up-to-date ones untouched.

    Args:
        store (KeyMaterialStore): Where site files live.
        policy (Policy): Renewal window and key size.
        clock (callable): Returns the current UTC time.
        dry_run (bool): Decide only, never generate or write.
    """

    def __init__(
        self,
        store: KeyMaterialStore,
        *,
        policy: Policy = Policy(),
        clock: Callable[[], datetime] = utcnow,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.policy = policy
        self.clock = clock
        self.dry_run = dry_run

    def _stale_reason(
        self, spec: LeafSpec, authority: AuthorityResult, want: Fingerprint, now: datetime
    ) -> tuple[Optional[KeyCertPair], Optional[str]]:
        if not self.store.exists(spec.primary_name):
            return None, "no stored certificate"
        pair = parse_pair(spec.primary_name, self.store.load(spec.primary_name))
        if authority.pair is None:
            return pair, "certificate authority will be regenerated"
        reason = staleness_reason(pair, want, now, timedelta(days=self.policy.renew_before_days))
        if reason is None and not _signed_by(pair.cert, authority.pair):
            reason = "not signed by the current certificate authority"
        return pair, reason

    def issue(self, spec: LeafSpec, authority: AuthorityResult) -> LeafResult:
        """
        Make sure the site has a current certificate from the given authority.

        Args:
            spec (LeafSpec): Desired site certificate.
            authority (AuthorityResult): Resolved authority (signing pair and fingerprint).

        Returns:
            LeafResult: REUSED when the stored pair matches and is unexpired,
                otherwise REGENERATED with the new pair.

        Raises:
            StorageError: The stored pair is unreadable or corrupt.
            CryptoError: Key generation or signing failed.
        """
        want = leaf_fingerprint(spec, authority.signing_fingerprint)
        now = self.clock()

        stored, reason = self._stale_reason(spec, authority, want, now)
        if reason is None:
            LOGGER.info("Certificate for %s is up to date", spec.primary_name)
            return LeafResult(spec.primary_name, want, Outcome.REUSED, pair=stored)

        LOGGER.info("Certificate for %s must be issued: %s", spec.primary_name, reason)
        # Without a signing pair (dry run with a pending authority) only the decision is reported
        if self.dry_run or authority.pair is None:
            return LeafResult(spec.primary_name, want, Outcome.REGENERATED, reason)

        key = generate_key(self.policy.key_size)
        cert = build_leaf_cert(key, spec, authority.pair, want, now)
        pair = KeyCertPair(key=key, cert=cert)
        self.store.save(spec.primary_name, pair.key_pem(), pair.cert_pem())
        return LeafResult(spec.primary_name, want, Outcome.REGENERATED, reason, pair=pair)
