"""Tests for per-item verification."""

from __future__ import annotations

import hashlib

from pkgtrust.header import RPMTAG_PAYLOADDIGEST, Header, TagType
from pkgtrust.keyring import Keyring
from pkgtrust.pgp import Certificate, sign_data
from pkgtrust.sigtags import RPMSIGTAG_MD5, RPMSIGTAG_PGP, RPMSIGTAG_RSA, RPMSIGTAG_SHA256, iter_items
from pkgtrust.verifier import Outcome, describe, verify_signature


def only_item(tag, type_, value):
    header = Header()
    header.add(tag, type_, value)
    (item,) = iter_items(header)
    return item


class TestDescribe:
    """Test item descriptions."""

    def test_digest_descriptions(self):
        """Test range prefixes on digests."""
        assert describe(only_item(RPMSIGTAG_SHA256, TagType.STRING, "00")) == "Header SHA256 digest"
        assert describe(only_item(RPMSIGTAG_MD5, TagType.BIN, b"\0")) == "MD5 digest"
        assert describe(only_item(RPMTAG_PAYLOADDIGEST, TagType.STRING_ARRAY, ["00"])) == (
            "Payload SHA256 digest"
        )

    def test_signature_description(self, rsa_key, rsa_cert):
        """Test header and combined signature descriptions."""
        key = Certificate.parse(rsa_cert).primary
        sig = sign_data(rsa_key, key, b"x")
        assert describe(only_item(RPMSIGTAG_RSA, TagType.BIN, sig)) == "Header V4 RSA/SHA256 Signature"
        assert describe(only_item(RPMSIGTAG_PGP, TagType.BIN, sig)) == "V4 RSA/SHA256 Signature"


class TestVerifyDigest:
    """Test digest comparison."""

    def test_match(self):
        """Test matching digest."""
        item = only_item(RPMSIGTAG_SHA256, TagType.STRING, hashlib.sha256(b"abc").hexdigest())
        outcome, message = verify_signature(Keyring(), item, hashlib.sha256(b"abc"))
        assert outcome is Outcome.OK
        assert message == "Header SHA256 digest: OK"

    def test_mismatch(self):
        """Test mismatch message names both values."""
        expected = hashlib.sha256(b"abc").hexdigest()
        calculated = hashlib.sha256(b"abd").hexdigest()
        item = only_item(RPMSIGTAG_SHA256, TagType.STRING, expected)
        outcome, message = verify_signature(Keyring(), item, hashlib.sha256(b"abd"))
        assert outcome is Outcome.FAIL
        assert message == f"Header SHA256 digest: BAD (Expected {expected} != {calculated})"

    def test_no_context(self):
        """Test a missing context is unsupported."""
        item = only_item(RPMSIGTAG_SHA256, TagType.STRING, "00")
        outcome, _ = verify_signature(Keyring(), item, None)
        assert outcome is Outcome.UNSUPPORTED


class TestVerifySignature:
    """Test signature outcomes."""

    def _item(self, rsa_key, rsa_cert, data=b"signed", created=None):
        key = Certificate.parse(rsa_cert).primary
        return only_item(RPMSIGTAG_RSA, TagType.BIN, sign_data(rsa_key, key, data, created=created))

    def test_ok(self, rsa_key, rsa_cert, keyring):
        """Test a good signature from a known key."""
        item = self._item(rsa_key, rsa_cert)
        outcome, message = verify_signature(keyring, item, hashlib.sha256(b"signed"))
        short_id = Certificate.parse(rsa_cert).key_id[-4:].hex()
        assert outcome is Outcome.OK
        assert message == f"Header V4 RSA/SHA256 Signature, key ID {short_id}: OK"

    def test_bad_data(self, rsa_key, rsa_cert, keyring):
        """Test a signature over other data fails."""
        item = self._item(rsa_key, rsa_cert)
        outcome, message = verify_signature(keyring, item, hashlib.sha256(b"tampered"))
        assert outcome is Outcome.FAIL
        assert message.endswith(": BAD")

    def test_nokey(self, rsa_key, rsa_cert):
        """Test unknown issuer."""
        item = self._item(rsa_key, rsa_cert)
        outcome, message = verify_signature(Keyring(), item, hashlib.sha256(b"signed"))
        assert outcome is Outcome.NOKEY
        assert message.endswith(": NOKEY")

    def test_signature_older_than_key(self, rsa_key, rsa_cert, keyring):
        """Test a signature predating its key is not trusted."""
        item = self._item(rsa_key, rsa_cert, created=1_500_000_000)
        outcome, _ = verify_signature(keyring, item, hashlib.sha256(b"signed"))
        assert outcome is Outcome.NOTTRUSTED

    def test_parse_error_item(self, keyring):
        """Test an item that failed to parse reports its error."""
        item = only_item(RPMSIGTAG_RSA, TagType.BIN, b"garbage")
        outcome, message = verify_signature(keyring, item, None)
        assert outcome is Outcome.FAIL
        assert message == item.error
