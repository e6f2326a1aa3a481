"""Shared fixtures: signing keys, certificates and package files."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from pkgtrust.builder import PackageBuilder
from pkgtrust.digest import DigestStream
from pkgtrust.keyring import Keyring
from pkgtrust.pgp import build_certificate

# Certificates are created well before any signature made during a test run
KEY_CREATED = 1_600_000_000

PAYLOAD = b"payload bytes of a compressed cpio archive\n" * 200


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ed_key() -> ed25519.Ed25519PrivateKey:
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture(scope="session")
def rsa_cert(rsa_key) -> bytes:
    return build_certificate(rsa_key, "RSA Packager <rsa@example.com>", created=KEY_CREATED)


@pytest.fixture(scope="session")
def ed_cert(ed_key) -> bytes:
    return build_certificate(ed_key, "Ed Packager <ed@example.com>", created=KEY_CREATED)


@pytest.fixture
def keyring(rsa_cert, ed_cert) -> Keyring:
    """In-memory keyring trusting both test keys."""
    ring = Keyring()
    ring.import_certificate(rsa_cert)
    ring.import_certificate(ed_cert)
    return ring


@pytest.fixture
def builder() -> PackageBuilder:
    """Unsigned package with the default digests."""
    return PackageBuilder(name="hello", payload=PAYLOAD)


@pytest.fixture
def signed_builder(rsa_key, rsa_cert) -> PackageBuilder:
    """Package signed with the RSA test key."""
    return PackageBuilder(name="hello", payload=PAYLOAD).sign_with(rsa_key, rsa_cert)


@pytest.fixture
def package_stream() -> Callable[[bytes], DigestStream]:
    """Wrap package bytes in a DigestStream."""
    def make(data: bytes, description: str = "test.rpm") -> DigestStream:
        return DigestStream(io.BytesIO(data), description)
    return make


@pytest.fixture
def package_file(tmp_path: Path) -> Callable[[PackageBuilder], Path]:
    """Write a built package below tmp_path."""
    def make(pkg: PackageBuilder, name: str = "hello-1.0-1.rpm") -> Path:
        return pkg.write(tmp_path / name)
    return make
