"""Tests for the trustctl command line."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from pkgtrust.builder import PackageBuilder
from pkgtrust.cli import cli
from pkgtrust.keyring import Keyring
from pkgtrust.pgp import armor


@pytest.fixture
def runner(monkeypatch) -> CliRunner:
    for name in ("PKGTRUST_KEYRING", "PKGTRUST_VERIFY_FLAGS", "PKGTRUST_VERBOSE"):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


@pytest.fixture
def keyring_dir(tmp_path: Path, rsa_cert) -> Path:
    path = tmp_path / "keys"
    Keyring(path).import_certificate(rsa_cert)
    return path


class TestChecksig:
    """Test the checksig command."""

    def test_good_package(self, runner, package_file, signed_builder, keyring_dir):
        """Test a good package exits 0."""
        pkg = package_file(signed_builder)
        result = runner.invoke(cli, ["--keyring", str(keyring_dir), "checksig", str(pkg)])
        assert result.exit_code == 0
        assert f"{pkg}: rsa sha1 sha256 payload pgp md5 OK" in result.output

    def test_exit_status_counts_failures(self, runner, tmp_path, signed_builder, keyring_dir):
        """Test one exit status unit per failed package."""
        good = signed_builder.write(tmp_path / "good.rpm")
        bad = tmp_path / "bad.rpm"
        data = signed_builder.build()
        bad.write_bytes(data[:-1] + bytes([data[-1] ^ 1]))
        missing = tmp_path / "missing.rpm"

        result = runner.invoke(cli, ["--keyring", str(keyring_dir), "checksig",
                                     str(good), str(bad), str(missing)])
        assert result.exit_code == 2
        assert f"{bad}: rsa sha1 sha256 PAYLOAD PGP MD5 NOT OK" in result.output

    def test_nosignature(self, runner, package_file, signed_builder, tmp_path):
        """Test --nosignature skips signatures from unknown keys."""
        pkg = package_file(signed_builder)
        result = runner.invoke(cli, ["--keyring", str(tmp_path / "empty"), "checksig",
                                     "--nosignature", str(pkg)])
        assert result.exit_code == 0
        assert f"{pkg}: sha1 sha256 payload md5 OK" in result.output

    def test_verbose(self, runner, package_file, signed_builder, keyring_dir):
        """Test verbose output lists each check."""
        pkg = package_file(signed_builder)
        result = runner.invoke(cli, ["--keyring", str(keyring_dir), "checksig", "-v", str(pkg)])
        assert result.exit_code == 0
        assert "    Header SHA256 digest: OK" in result.output
        assert "    MD5 digest: OK" in result.output

    def test_config_file(self, runner, package_file, tmp_path):
        """Test settings from a YAML configuration file."""
        pkg = package_file(PackageBuilder(name="hello", payload=b"x" * 10, digests=("sha256",)))
        config = tmp_path / "pkgtrust.yaml"
        config.write_text("verbose: true\n")
        result = runner.invoke(cli, ["--config", str(config), "checksig", str(pkg)])
        assert result.exit_code == 0
        assert "    Payload SHA256 digest: OK" in result.output

    def test_bad_config(self, runner, package_file, tmp_path):
        """Test an invalid configuration is reported."""
        config = tmp_path / "pkgtrust.yaml"
        config.write_text("verify_flags: [bogus]\n")
        result = runner.invoke(cli, ["--config", str(config), "checksig", "x.rpm"])
        assert result.exit_code == 1
        assert "Unknown verify flag" in result.output


class TestKeyCommands:
    """Test key generation, import and listing."""

    def test_gen_import_list(self, runner, tmp_path):
        """Test a generated key can be imported and listed."""
        out = tmp_path / "signing"
        keys = tmp_path / "keys"
        result = runner.invoke(cli, ["gen-key", "--out", str(out), "--user-id", "CI <ci@example.com>",
                                     "--algorithm", "ed25519"])
        assert result.exit_code == 0
        assert (out / "secret.pem").exists()

        result = runner.invoke(cli, ["--keyring", str(keys), "import", str(out / "public.asc")])
        assert result.exit_code == 0
        assert "Imported 1 key(s), 0 failure(s)" in result.output

        result = runner.invoke(cli, ["--keyring", str(keys), "keys"])
        assert result.exit_code == 0
        assert "CI <ci@example.com>" in result.output

    def test_import_failures(self, runner, tmp_path, rsa_cert):
        """Test import exit status is the failure count."""
        good = tmp_path / "good.asc"
        good.write_text(armor(rsa_cert))
        result = runner.invoke(cli, ["--keyring", str(tmp_path / "keys"), "import",
                                     str(good), str(tmp_path / "missing.asc")])
        assert result.exit_code == 1
        assert "Imported 1 key(s), 1 failure(s)" in result.output

    def test_empty_keyring(self, runner, tmp_path):
        """Test listing an empty keyring."""
        result = runner.invoke(cli, ["--keyring", str(tmp_path / "none"), "keys"])
        assert result.exit_code == 0
        assert "No keys in keyring" in result.output
