"""
On-disk storage of key/certificate pairs.

Each identity is stored as two files in the output directory:

    <name>.key   private key (PEM)
    <name>.crt   certificate (PEM)

A save stages both files before renaming either and keeps the previous key
as <name>.key.bak until the new certificate is in place.

The store moves bytes only; parsing and validation happen in certgen.pki.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from .errors import (
    ArtifactNotFound,
    CorruptArtifactError,
    StorageError,
    StoragePermissionError,
)

LOGGER = logging.getLogger(__name__)

KEY_SUFFIX = ".key"
CERT_SUFFIX = ".crt"
BACKUP_SUFFIX = ".bak"
KEY_MODE = 0o600
CERT_MODE = 0o644


@dataclass(frozen=True)
class StoredPair:
    """Raw PEM bytes of a stored key and certificate."""
    key_pem: bytes
    cert_pem: bytes


def _write_temp(path: Path, data: bytes, mode: int) -> Path:
    """
    Write content to a temporary sibling of `path`, flushed to disk.

    Args:
        path (Path): Final destination; the temporary file lives in its directory.
        data (bytes): Full file content.
        mode (int): Permission bits of the final file.

    Returns:
        Path: The temporary file, ready to be renamed over `path`.

    Raises:
        OSError: Propagated to the caller for classification.
    """
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
    except BaseException:
        _discard(Path(tmp))
        raise
    return Path(tmp)


def _discard(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class KeyMaterialStore:
    """
    Key/certificate pairs under a single directory.

    Writes to the same name are serialized, so concurrent callers can never
    interleave the two halves of a pair.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def key_path(self, name: str) -> Path:
        return self.directory / f"{name}{KEY_SUFFIX}"

    def cert_path(self, name: str) -> Path:
        return self.directory / f"{name}{CERT_SUFFIX}"

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def exists(self, name: str) -> bool:
        """True if either half of the pair is present (a half pair still counts, load() reports it)."""
        try:
            return self.key_path(name).exists() or self.cert_path(name).exists()
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot access {self.directory}: {e}") from e

    def _read(self, path: Path) -> bytes:
        try:
            data = path.read_bytes()
        except PermissionError as e:
            raise StoragePermissionError(f"Permission denied reading {path}") from e
        except IsADirectoryError as e:
            raise CorruptArtifactError(f"Expected a file but found a directory: {path}") from e
        except OSError as e:
            raise StorageError(f"Unable to read {path}: {e}") from e
        if not data.strip():
            raise CorruptArtifactError(f"Empty artifact file: {path}")
        return data

    def load(self, name: str) -> StoredPair:
        """
        Read the raw bytes of a stored pair.

        Args:
            name (str): Artifact name (file prefix).

        Returns:
            StoredPair: Key and certificate PEM bytes.

        Raises:
            ArtifactNotFound: Neither file exists.
            CorruptArtifactError: Only one of the two files exists, or a file is empty.
            StoragePermissionError: A file exists but cannot be read.
        """
        key_path, cert_path = self.key_path(name), self.cert_path(name)
        has_key, has_cert = key_path.exists(), cert_path.exists()
        if not has_key and not has_cert:
            raise ArtifactNotFound(f"No stored material for {name} in {self.directory}")
        if not (has_key and has_cert):
            missing = key_path if not has_key else cert_path
            raise CorruptArtifactError(
                f"Incomplete pair for {name}: {missing} is missing. "
                f"Remove the remaining file to have it regenerated."
            )
        LOGGER.debug("Reading %s and %s", key_path, cert_path)
        return StoredPair(key_pem=self._read(key_path), cert_pem=self._read(cert_path))

    def save(self, name: str, key_pem: bytes, cert_pem: bytes) -> None:
        """
        Persist a pair, replacing any previous one.

        Both files are staged before either is renamed into place, and the
        previous key is kept aside until the new certificate is installed. A
        failure at any step leaves the previous pair (or no pair) behind.

        Args:
            name (str): Artifact name (file prefix).
            key_pem (bytes): Private key PEM.
            cert_pem (bytes): Certificate PEM.

        Raises:
            StoragePermissionError: The directory or files are not writable.
            StorageError: Any other I/O failure.
        """
        with self._lock_for(name):
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                self._install(name, key_pem, cert_pem)
            except PermissionError as e:
                raise StoragePermissionError(f"Permission denied writing {name} in {self.directory}") from e
            except OSError as e:
                raise StorageError(f"Unable to write {name} in {self.directory}: {e}") from e

    def _install(self, name: str, key_pem: bytes, cert_pem: bytes) -> None:
        key_path, cert_path = self.key_path(name), self.cert_path(name)
        backup = key_path.with_name(key_path.name + BACKUP_SUFFIX)
        staged = []
        try:
            staged.append(_write_temp(key_path, key_pem, KEY_MODE))
            staged.append(_write_temp(cert_path, cert_pem, CERT_MODE))
            key_tmp, cert_tmp = staged

            # Set the old key aside; it is the only copy matching the old certificate
            had_key = key_path.exists()
            if had_key:
                os.replace(key_path, backup)
            try:
                LOGGER.info("Writing key file: %s", key_path)
                os.replace(key_tmp, key_path)
                LOGGER.info("Writing certificate file: %s", cert_path)
                os.replace(cert_tmp, cert_path)
            except BaseException:
                LOGGER.error("Writing %s failed, restoring the previous key", name)
                if had_key:
                    os.replace(backup, key_path)
                else:
                    _discard(key_path)
                raise
            if had_key:
                _discard(backup)
        finally:
            for tmp in staged:
                _discard(tmp)
