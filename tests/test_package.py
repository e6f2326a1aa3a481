"""Tests for streaming package verification."""

from __future__ import annotations

from pathlib import Path

from pkgtrust.builder import PackageBuilder
from pkgtrust.config import TrustConfig
from pkgtrust.header import RPMTAG_PAYLOADDIGEST, TagType
from pkgtrust.keyring import Keyring
from pkgtrust.package import PackageVerifier, VerifyState, verify_package
from pkgtrust.report import RecordingReporter
from pkgtrust.sigtags import (
    RPMSIGTAG_DSA,
    RPMSIGTAG_GPG,
    RPMSIGTAG_MD5,
    RPMSIGTAG_PGP,
    RPMSIGTAG_RSA,
    RPMSIGTAG_SHA1,
    RPMSIGTAG_SHA256,
    SignatureKind,
    VerifyFlags,
)
from pkgtrust.verifier import Outcome


def flip_last_byte(data: bytes) -> bytes:
    return data[:-1] + bytes([data[-1] ^ 0xFF])


def run(stream, keyring, data, flags=VerifyFlags(0), reporter=None):
    reporter = reporter or RecordingReporter()
    result = verify_package(stream(data), keyring, flags, reporter)
    return result, reporter


def outcomes(reporter: RecordingReporter) -> dict[int, Outcome]:
    return {item.tag: outcome for item, outcome, _ in reporter.calls}


class TestVerifyPackage:
    """Test the verification phases and aggregation."""

    def test_all_items_pass(self, package_stream, keyring, signed_builder):
        """Test a good signed package reports every item once, in phase order."""
        result, reporter = run(package_stream, keyring, signed_builder.build())

        assert result.outcome is Outcome.OK
        assert result.state is VerifyState.DONE
        assert result.failures == 0
        assert reporter.tags == [
            RPMSIGTAG_RSA, RPMSIGTAG_SHA1, RPMSIGTAG_SHA256,
            RPMTAG_PAYLOADDIGEST,
            RPMSIGTAG_PGP, RPMSIGTAG_MD5,
        ]
        assert all(outcome is Outcome.OK for outcome in outcomes(reporter).values())

    def test_ed25519_signed_package(self, package_stream, keyring, ed_key, ed_cert):
        """Test EdDSA signers produce DSA and GPG tags that verify."""
        pkg = PackageBuilder(name="hello", payload=b"data" * 100).sign_with(ed_key, ed_cert)
        result, reporter = run(package_stream, keyring, pkg.build())

        assert result.ok
        assert outcomes(reporter)[RPMSIGTAG_DSA] is Outcome.OK
        assert outcomes(reporter)[RPMSIGTAG_GPG] is Outcome.OK

    def test_single_failing_item(self, package_stream, keyring):
        """Test corrupt payload fails only the payload digest."""
        pkg = PackageBuilder(name="hello", payload=b"data" * 100, digests=("sha256",))
        result, reporter = run(package_stream, keyring, flip_last_byte(pkg.build()))

        assert result.outcome is Outcome.FAIL
        assert result.failures == 1
        assert outcomes(reporter) == {
            RPMSIGTAG_SHA256: Outcome.OK,
            RPMTAG_PAYLOADDIGEST: Outcome.FAIL,
        }
        failed = [item for item, outcome, _ in reporter.calls if outcome is not Outcome.OK]
        assert failed[0].kind is SignatureKind.PAYLOAD
        assert "Payload SHA256 digest: BAD" in result.message

    def test_corrupt_payload_no_short_circuit(self, package_stream, keyring, signed_builder):
        """Test every item still reports after a payload failure."""
        result, reporter = run(package_stream, keyring, flip_last_byte(signed_builder.build()))

        got = outcomes(reporter)
        assert len(reporter.calls) == 6
        assert got[RPMSIGTAG_RSA] is Outcome.OK
        assert got[RPMSIGTAG_SHA1] is Outcome.OK
        assert got[RPMSIGTAG_SHA256] is Outcome.OK
        assert got[RPMTAG_PAYLOADDIGEST] is Outcome.FAIL
        assert got[RPMSIGTAG_PGP] is Outcome.FAIL
        assert got[RPMSIGTAG_MD5] is Outcome.FAIL
        assert result.failures == 3

    def test_combined_digest_needs_payload(self, package_stream, keyring, signed_builder):
        """Test combined items do not validate on header bytes alone."""
        data = signed_builder.build()
        header_only = data[:-len(signed_builder.payload)]

        _, full = run(package_stream, keyring, data)
        result, truncated = run(package_stream, keyring, header_only)

        assert outcomes(full)[RPMSIGTAG_MD5] is Outcome.OK
        assert outcomes(truncated)[RPMSIGTAG_MD5] is Outcome.FAIL
        assert outcomes(truncated)[RPMSIGTAG_PGP] is Outcome.FAIL
        assert outcomes(truncated)[RPMSIGTAG_SHA256] is Outcome.OK
        assert result.outcome is Outcome.FAIL

    def test_nosignatures_flag(self, package_stream, keyring, signed_builder):
        """Test disabling signatures drops exactly the signature items."""
        data = flip_last_byte(signed_builder.build())
        _, everything = run(package_stream, keyring, data)
        _, nosig = run(package_stream, keyring, data, VerifyFlags.NOSIGNATURES)

        assert len(everything.calls) - len(nosig.calls) == 2
        assert RPMSIGTAG_RSA not in outcomes(nosig)
        assert RPMSIGTAG_PGP not in outcomes(nosig)

    def test_nohdrchk_flag(self, package_stream, keyring, signed_builder):
        """Test skipping header entry checks keeps a good package good."""
        data = signed_builder.build()
        _, checked = run(package_stream, keyring, data)
        result, unchecked = run(package_stream, keyring, data, VerifyFlags.NOHDRCHK)

        assert result.ok
        assert unchecked.calls == checked.calls

    def test_nodigests_flag(self, package_stream, keyring):
        """Test disabled digests never affect the outcome."""
        pkg = PackageBuilder(name="hello", payload=b"data" * 100)
        result, reporter = run(package_stream, keyring, flip_last_byte(pkg.build()),
                               VerifyFlags.NODIGESTS)
        assert reporter.calls == []
        assert result.ok

    def test_idempotent(self, package_stream, keyring, signed_builder):
        """Test verifying the same bytes twice gives identical results."""
        data = flip_last_byte(signed_builder.build())
        first, r1 = run(package_stream, keyring, data)
        second, r2 = run(package_stream, keyring, data)

        assert [(i.tag, o, m) for i, o, m in r1.calls] == [(i.tag, o, m) for i, o, m in r2.calls]
        assert first.to_dict() == second.to_dict()

    def test_digests_only_package(self, package_stream):
        """Test SHA256 header digest and payload digest, no signatures."""
        pkg = PackageBuilder(name="hello", payload=b"data" * 100, digests=("sha256",))
        result, reporter = run(package_stream, Keyring(), pkg.build())

        assert result.ok
        assert result.failures == 0
        assert [message for _, _, message in reporter.calls] == [
            "Header SHA256 digest: OK",
            "Payload SHA256 digest: OK",
        ]

    def test_nokey(self, package_stream, signed_builder):
        """Test signatures by unknown keys fail the package."""
        result, reporter = run(package_stream, Keyring(), signed_builder.build())

        assert result.outcome is Outcome.FAIL
        assert outcomes(reporter)[RPMSIGTAG_RSA] is Outcome.NOKEY
        assert outcomes(reporter)[RPMSIGTAG_PGP] is Outcome.NOKEY
        assert outcomes(reporter)[RPMSIGTAG_SHA256] is Outcome.OK

    def test_reporter_override_is_authoritative(self, package_stream, keyring, signed_builder):
        """Test a reporter may turn failures into successes."""
        reporter = RecordingReporter(override=lambda item, outcome: Outcome.OK)
        result, _ = run(package_stream, keyring, flip_last_byte(signed_builder.build()),
                        reporter=reporter)
        assert result.ok
        assert any(outcome is Outcome.FAIL for _, outcome, _ in reporter.calls)

    def test_malformed_signature_tag(self, package_stream, keyring, builder):
        """Test a garbage signature is reported as a failure in its phase."""
        builder.add_signature_tag(RPMSIGTAG_DSA, TagType.BIN, b"garbage")
        result, reporter = run(package_stream, keyring, builder.build())

        assert reporter.tags[0] == RPMSIGTAG_DSA
        item, outcome, message = reporter.calls[0]
        assert outcome is Outcome.FAIL
        assert message.startswith("dsa tag 267: BAD")
        assert result.failures == 1

    def test_unknown_tags_are_ignored(self, package_stream, keyring, builder):
        """Test unknown non-signature tags are not reported."""
        builder.add_signature_tag(4243, TagType.STRING, "future")
        result, reporter = run(package_stream, keyring, builder.build())
        assert result.ok
        assert 4243 not in reporter.tags


class TestAbort:
    """Test read and format failures."""

    def test_bad_lead(self, package_stream, keyring, caplog):
        """Test a non-package aborts before any item."""
        stream = package_stream(b"\0" * 200, "junk.rpm")
        reporter = RecordingReporter()
        result = verify_package(stream, keyring, reporter=reporter)

        assert result.state is VerifyState.FAILED
        assert result.outcome is Outcome.FAIL
        assert reporter.calls == []
        assert result.message.startswith("junk.rpm: ")
        assert "junk.rpm: not an rpm package" in caplog.text

    def test_truncated_header(self, package_stream, keyring, signed_builder):
        """Test a cut main header aborts and discards every context."""
        data = signed_builder.build()
        cut = data[:len(data) - len(signed_builder.payload) - 10]
        stream = package_stream(cut)
        reporter = RecordingReporter()
        result = verify_package(stream, keyring, reporter=reporter)

        assert result.state is VerifyState.FAILED
        assert reporter.calls == []
        assert stream.active_ids == []

    def test_contexts_released_after_success(self, package_stream, keyring, signed_builder):
        """Test no digest context outlives a verification."""
        stream = package_stream(signed_builder.build())
        verify_package(stream, keyring, reporter=RecordingReporter())
        assert stream.active_ids == []


class TestPackageVerifier:
    """Test file level verification and output."""

    def test_default_output(self, package_file, keyring, signed_builder):
        """Test one summary line per package."""
        path = package_file(signed_builder)
        lines: list[str] = []
        verifier = PackageVerifier(keyring, echo=lines.append)

        assert verifier.verify_paths([path]) == 0
        assert lines == [f"{path}: rsa sha1 sha256 payload pgp md5 OK"]

    def test_default_output_failures(self, package_file, signed_builder):
        """Test failure tokens are uppercase and NOKEY parenthesised."""
        path = package_file(signed_builder)
        lines: list[str] = []
        verifier = PackageVerifier(Keyring(), echo=lines.append)

        assert verifier.verify_paths([path]) == 1
        assert lines == [f"{path}: (RSA) sha1 sha256 payload (PGP) md5 NOT OK"]

    def test_verbose_output(self, package_file, keyring):
        """Test verbose layout."""
        pkg = PackageBuilder(name="hello", payload=b"abc" * 50, digests=("sha256",))
        path = package_file(pkg)
        lines: list[str] = []
        verifier = PackageVerifier(keyring, TrustConfig(verbose=True), echo=lines.append)

        assert verifier.verify_paths([path]) == 0
        assert lines == [
            f"{path}:",
            "    Header SHA256 digest: OK",
            "    Payload SHA256 digest: OK",
        ]

    def test_missing_file(self, keyring, tmp_path: Path):
        """Test an unreadable path counts as a failure."""
        lines: list[str] = []
        verifier = PackageVerifier(keyring, echo=lines.append)
        assert verifier.verify_paths([tmp_path / "absent.rpm"]) == 1
        assert lines[0].endswith("NOT OK")

    def test_configured_flags(self, package_file, keyring, signed_builder):
        """Test verify flags from configuration."""
        path = package_file(signed_builder)
        lines: list[str] = []
        config = TrustConfig(verify_flags=["nosignatures"])
        verifier = PackageVerifier(keyring, config, echo=lines.append)

        assert verifier.verify_paths([path]) == 0
        assert lines == [f"{path}: sha1 sha256 payload md5 OK"]
