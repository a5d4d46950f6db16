"""
Error kinds raised by certgen.

Every error derives from CertgenError so callers (the CLI in particular) can
catch the whole family in one place and still tell the kinds apart:

- ConfigurationError: invalid or missing configuration value. Always raised
  before any file is written.
- StorageError: the output directory could not be read or written.
  StoragePermissionError and CorruptArtifactError narrow it down; an artifact
  that is present but unusable is never reported as absent.
- CryptoError: key generation or signing failed.
- ReconcileAborted: the operator declined to generate a new authority.
"""

from __future__ import annotations


class CertgenError(Exception):
    """Base class for all certgen errors."""


class ConfigurationError(CertgenError):
    """A configuration value is missing, malformed or inconsistent."""


class StorageError(CertgenError):
    """Reading or writing key material failed."""


class StoragePermissionError(StorageError):
    """The output directory or an artifact file is not accessible."""


class ArtifactNotFound(StorageError):
    """No artifact is stored under the requested name."""


class CorruptArtifactError(StorageError):
    """An artifact exists but cannot be trusted (half a pair, unparsable, mismatched key)."""


class CryptoError(CertgenError):
    """Key generation or certificate signing failed."""


class ReconcileAborted(CertgenError):
    """The operator refused to generate a new certificate authority."""


class VerificationError(CertgenError, ValueError):
    """Persisted material does not match the configuration or is not a valid chain."""
