"""Keyring of trusted OpenPGP certificates.

Certificates are indexed by the key ids of their primary key and
subkeys. A keyring may be backed by a directory, in which case every
imported certificate is also written there as ``<keyid>.key``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from pkgtrust.pgp import Certificate, PGPError, PublicKeyPacket

logger = logging.getLogger(__name__)


class KeyringError(Exception):
    """Certificate rejected by the keyring."""
    pass


def _check_key_ids(cert: Certificate) -> None:
    # v3 keys only have an id when they are RSA
    for key in cert.keys():
        key.key_id


class Keyring:
    """A set of certificates allowing lookup by key id."""

    def __init__(self, path: Path | None = None) -> None:
        """Initialize keyring.

        Args:
            path: Directory holding persisted certificates (optional)
        """
        self.path = path
        # fingerprint => certificate
        self._certs: dict[bytes, Certificate] = {}
        self._by_key_id: dict[bytes, tuple[Certificate, PublicKeyPacket]] = {}

    def __len__(self) -> int:
        return len(self._certs)

    def __iter__(self) -> Iterator[Certificate]:
        return iter(self._certs.values())

    def __contains__(self, key_id: bytes) -> bool:
        return key_id in self._by_key_id

    def _add(self, cert: Certificate) -> bool:
        if cert.fingerprint in self._certs:
            return False
        self._certs[cert.fingerprint] = cert
        for key in cert.keys():
            self._by_key_id.setdefault(key.key_id, (cert, key))
        return True

    def import_certificate(self, data: bytes) -> Certificate:
        """Import one binary certificate.

        Importing a certificate already present is accepted.

        Returns:
            The parsed certificate

        Raises:
            KeyringError: If ``data`` is not a single usable certificate or
                cannot be persisted
        """
        try:
            cert = Certificate.parse(data)
            _check_key_ids(cert)
        except PGPError as e:
            raise KeyringError(f"invalid certificate: {e}") from e

        if not self._add(cert):
            logger.debug("key %s already in keyring", cert.key_id.hex())
            return cert

        if self.path is not None:
            try:
                self.path.mkdir(parents=True, exist_ok=True)
                (self.path / f"{cert.key_id.hex()}.key").write_bytes(cert.data)
            except OSError as e:
                del self._certs[cert.fingerprint]
                self._by_key_id = {
                    k: v for k, v in self._by_key_id.items() if v[0] is not cert
                }
                raise KeyringError(f"cannot store key {cert.key_id.hex()}: {e}") from e

        logger.debug("imported key %s (%s)", cert.key_id.hex(), cert.user_ids[0])
        return cert

    def lookup(self, key_id: bytes) -> tuple[Certificate, PublicKeyPacket] | None:
        """Return (certificate, key packet) for a key id, if known."""
        return self._by_key_id.get(key_id)

    @classmethod
    def load(cls, path: Path) -> Keyring:
        """Open a directory backed keyring, reading its stored certificates.

        Unreadable entries are logged and skipped.
        """
        keyring = cls(path)
        if not path.is_dir():
            return keyring
        for file_path in sorted(path.glob("*.key")):
            try:
                cert = Certificate.parse(file_path.read_bytes())
                _check_key_ids(cert)
            except (OSError, PGPError) as e:
                logger.warning("%s: skipping unreadable key: %s", file_path, e)
                continue
            keyring._add(cert)
        return keyring
