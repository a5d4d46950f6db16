"""
Certificate authority management.

The authority is reused whenever possible: regenerating it invalidates every
certificate it ever signed. A new authority is created only when none is
stored, when the stored one was issued for a different configuration, or when
it has expired (or is inside the renewal window).
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509 import BasicConstraints, KeyUsage, SubjectKeyIdentifier

from .config import AuthoritySpec, NetworkIdentity, Policy
from .errors import CorruptArtifactError, CryptoError, ReconcileAborted
from .fingerprint import Fingerprint, authority_fingerprint
from .outcome import Outcome, staleness_reason
from .pki import (
    KeyCertPair,
    fingerprint_extension,
    generate_key,
    parse_pair,
    subject_name,
    utcnow,
)
from .store import KeyMaterialStore

LOGGER = logging.getLogger(__name__)

Approver = Callable[[str], bool]


@dataclass(frozen=True)
class AuthorityResult:
    """
    Outcome of resolving the authority.

    Attributes:
        name (str): Artifact name of the authority.
        fingerprint (Fingerprint): Fingerprint of the authority configuration.
        outcome (Outcome): REUSED or REGENERATED.
        reason (str): Why the authority was regenerated (empty when reused).
        pair (KeyCertPair | None): Authority key and certificate. None only in a
            dry run that would generate a new authority.
    """
    name: str
    fingerprint: Fingerprint
    outcome: Outcome
    reason: str = ""
    pair: Optional[KeyCertPair] = None

    @property
    def signing_fingerprint(self) -> Fingerprint:
        """
        Fingerprint leaves are bound to.

        Combines the configuration fingerprint with the authority's public key,
        so a regenerated authority changes it even when its configuration did not
        (for instance after expiry).
        """
        h = hashlib.sha256(self.fingerprint.encode("ascii"))
        if self.pair is not None:
            h.update(self.pair.cert.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            ))
        return h.hexdigest()


def build_authority_cert(
    key: rsa.RSAPrivateKey,
    spec: AuthoritySpec,
    fp: Fingerprint,
    now: datetime,
) -> x509.Certificate:
    """
    Create a self-signed CA certificate.

    Args:
        key (RSAPrivateKey): The authority's new private key.
        spec (AuthoritySpec): Name, identity and validity of the authority.
        fp (Fingerprint): Configuration fingerprint to embed.
        now (datetime): Start of the validity window.

    Returns:
        x509.Certificate: Self-signed certificate, issuer == subject.

    Raises:
        CryptoError: If signing fails.

    Notes:
        - BasicConstraints is CA:TRUE with path_length=0: the authority signs
          leaves directly and no intermediates.
        - KeyUsage allows certificate and CRL signing.
    """
    subject = issuer = subject_name(spec.identity, spec.name)  # Self-signed: issuer DN is the subject DN

    # Build the root certificate (CA, signs leaves only)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)                                        # Authority DN from network identity
        .issuer_name(issuer)                                          # Same DN, self-issued
        .public_key(key.public_key())                                 # Embed the new CA public key
        .serial_number(x509.random_serial_number())                   # Random 159-bit serial
        .not_valid_before(now)                                        # Valid from now
        .not_valid_after(now + timedelta(days=spec.validity_days))    # Configured lifetime
        .add_extension(BasicConstraints(ca=True, path_length=0), critical=True)  # CA, no intermediates
        .add_extension(SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,     # Sign leaf certificates
            crl_sign=True,          # Sign CRLs
            encipher_only=False,
            decipher_only=False,
        ), critical=True)
        .add_extension(fingerprint_extension(fp), critical=False)    # Configuration this CA was issued for
    )
    try:
        return builder.sign(private_key=key, algorithm=hashes.SHA256())
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Signing certificate authority {spec.name} failed: {e}") from e


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return cert.extensions.get_extension_for_class(BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


class AuthorityManager:
    """
    Loads or generates the certificate authority.

    Args:
        store (KeyMaterialStore): Where the authority's files live.
        policy (Policy): Renewal window and key size.
        clock (callable): Returns the current UTC time.
        approve (callable | None): Asked before a new authority is generated;
            returning False aborts the run.
        dry_run (bool): Decide only, never generate or write.
    """

    def __init__(
        self,
        store: KeyMaterialStore,
        *,
        policy: Policy = Policy(),
        clock: Callable[[], datetime] = utcnow,
        approve: Optional[Approver] = None,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.policy = policy
        self.clock = clock
        self.approve = approve
        self.dry_run = dry_run

    def _stale_reason(self, spec: AuthoritySpec, want: Fingerprint, now: datetime) -> tuple[Optional[KeyCertPair], Optional[str]]:
        if not self.store.exists(spec.name):
            return None, "no stored authority"
        pair = parse_pair(spec.name, self.store.load(spec.name))
        if not _is_ca(pair.cert):
            raise CorruptArtifactError(f"{spec.name} exists but is not a CA certificate")
        renew = timedelta(days=self.policy.renew_before_days)
        return pair, staleness_reason(pair, want, now, renew)

    def resolve(self, spec: AuthoritySpec, identity: Optional[NetworkIdentity] = None) -> AuthorityResult:
        """
        Return a usable authority, generating one only when required.

        Args:
            spec (AuthoritySpec): Desired authority.
            identity (NetworkIdentity | None): Overrides spec.identity when given.

        Returns:
            AuthorityResult: The authority pair with its fingerprint and outcome.

        Raises:
            StorageError: The stored authority is unreadable or corrupt.
            ReconcileAborted: The approval callback refused regeneration.
            CryptoError: Key generation or signing failed.
        """
        if identity is not None and identity != spec.identity:
            spec = dataclasses.replace(spec, identity=identity)
        want = authority_fingerprint(spec)
        now = self.clock()

        stored, reason = self._stale_reason(spec, want, now)
        if reason is None:
            LOGGER.info("Certificate authority %s read OK, reusing it", spec.name)
            return AuthorityResult(spec.name, want, Outcome.REUSED, pair=stored)

        LOGGER.warning("Certificate authority %s must be generated: %s", spec.name, reason)
        if self.dry_run:  # Decide only, nothing is generated or written
            return AuthorityResult(spec.name, want, Outcome.REGENERATED, reason, pair=None)

        if self.approve is not None:
            prompt = f"Certificate authority {spec.name}: {reason}. Generate a new one?"
            if stored is not None:  # Replacing a CA invalidates every leaf it signed
                prompt += " Every site certificate will be reissued."
            if not self.approve(prompt):
                raise ReconcileAborted(f"Generation of certificate authority {spec.name} declined")

        LOGGER.info("Generating a new %d-bit RSA key for %s", self.policy.key_size, spec.name)
        key = generate_key(self.policy.key_size)
        cert = build_authority_cert(key, spec, want, now)
        pair = KeyCertPair(key=key, cert=cert)
        self.store.save(spec.name, pair.key_pem(), pair.cert_pem())
        return AuthorityResult(spec.name, want, Outcome.REGENERATED, reason, pair=pair)
