"""
X.509 helpers shared by the authority and leaf issuers.

Covers key generation, subject names, PEM (de)serialization, and the private
extension that records which configuration fingerprint a certificate was
issued for.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509 import Name, NameAttribute
from cryptography.x509.oid import NameOID

from .config import NetworkIdentity
from .errors import CorruptArtifactError, CryptoError
from .store import StoredPair

# Self-assigned OID under the UUID arc (ITU-T X.667).
FINGERPRINT_OID = x509.ObjectIdentifier("2.25.105678321499821066344128940276655719811")
_DIGEST_LEN = 32


# ---------- helpers ----------

def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds (certificate resolution)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def generate_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """
    Generate a new RSA private key.

    Args:
        key_size (int): Modulus size in bits.

    Returns:
        RSAPrivateKey: The generated key.

    Raises:
        CryptoError: If the backend refuses to generate the key.
    """
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)  # Standard exponent F4
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"RSA key generation failed: {e}") from e


def subject_name(identity: NetworkIdentity, common_name: str, unit: Optional[str] = None) -> Name:
    """
    Build a subject Distinguished Name.

    Args:
        identity (NetworkIdentity): Organization, email and optional location.
        common_name (str): Common Name (CN).
        unit (str | None): Organizational Unit (OU). Defaults to the organization name.

    Returns:
        cryptography.x509.Name: CN, O, OU, emailAddress and, when configured, C and ST.
    """
    attrs = [
        NameAttribute(NameOID.COMMON_NAME, common_name),
        NameAttribute(NameOID.ORGANIZATION_NAME, identity.name),
        NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, unit or identity.name),
        NameAttribute(NameOID.EMAIL_ADDRESS, identity.email),
    ]
    if identity.country:
        attrs.append(NameAttribute(NameOID.COUNTRY_NAME, identity.country))
    if identity.province:
        attrs.append(NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, identity.province))
    return Name(attrs)


def fingerprint_extension(fp: str) -> x509.UnrecognizedExtension:
    """Wrap a hex fingerprint as a DER OCTET STRING in the private extension."""
    digest = bytes.fromhex(fp)
    return x509.UnrecognizedExtension(FINGERPRINT_OID, b"\x04" + bytes([len(digest)]) + digest)


def embedded_fingerprint(cert: x509.Certificate) -> Optional[str]:
    """
    Read the fingerprint a certificate was issued for.

    Args:
        cert (x509.Certificate): Certificate to inspect.

    Returns:
        str | None: Hex fingerprint, or None for certificates issued by other tools.
    """
    try:
        ext = cert.extensions.get_extension_for_oid(FINGERPRINT_OID)
    except x509.ExtensionNotFound:
        return None
    raw = ext.value.value
    if len(raw) != _DIGEST_LEN + 2 or raw[0] != 0x04 or raw[1] != _DIGEST_LEN:
        return None
    return raw[2:].hex()


def pem_private_key(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def pem_cert(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(encoding=serialization.Encoding.PEM)


def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


# ---------- pairs ----------

@dataclass(frozen=True)
class KeyCertPair:
    """
    A private key together with the certificate for its public key.

    Attributes:
        key (RSAPrivateKey): Private key.
        cert (x509.Certificate): Certificate holding the matching public key.
    """
    key: rsa.RSAPrivateKey
    cert: x509.Certificate

    @property
    def not_after(self) -> datetime:
        return self.cert.not_valid_after_utc

    @property
    def fingerprint(self) -> Optional[str]:
        return embedded_fingerprint(self.cert)

    def key_pem(self) -> bytes:
        return pem_private_key(self.key)

    def cert_pem(self) -> bytes:
        return pem_cert(self.cert)


def parse_pair(name: str, stored: StoredPair) -> KeyCertPair:
    """
    Parse stored PEM bytes and check that key and certificate belong together.

    Args:
        name (str): Artifact name, for error messages.
        stored (StoredPair): Raw bytes from the store.

    Returns:
        KeyCertPair: Parsed pair.

    Raises:
        CorruptArtifactError: If either file is unparsable, the key is not RSA,
            or the key does not match the certificate.
    """
    try:
        key = serialization.load_pem_private_key(stored.key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CorruptArtifactError(f"Invalid or encrypted private key for {name}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CorruptArtifactError(f"Private key for {name} is not an RSA key")
    try:
        cert = x509.load_pem_x509_certificate(stored.cert_pem)
    except ValueError as e:
        raise CorruptArtifactError(f"Invalid certificate PEM for {name}: {e}") from e
    # Compare SubjectPublicKeyInfo DER; a half-replaced pair fails here
    if _spki(cert.public_key()) != _spki(key.public_key()):
        raise CorruptArtifactError(f"Private key for {name} does not match its certificate")
    return KeyCertPair(key=key, cert=cert)
