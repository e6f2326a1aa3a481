"""trustctl: package signature checking and key management."""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path

import click
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from pkgtrust import __version__
from pkgtrust.config import TrustConfig
from pkgtrust.keyimport import import_pubkeys
from pkgtrust.keyring import Keyring
from pkgtrust.package import PackageVerifier
from pkgtrust.pgp import ArmorType, armor, build_certificate
from pkgtrust.sigtags import VerifyFlags

MAX_EXIT_STATUS = 255


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def load_config(config_path: Path | None) -> TrustConfig:
    if config_path is not None:
        return TrustConfig.from_yaml(config_path)
    return TrustConfig.from_env()


def open_keyring(config: TrustConfig) -> Keyring:
    if config.keyring_dir is None:
        return Keyring()
    return Keyring.load(config.keyring_dir)


@click.group()
@click.version_option(version=__version__, prog_name="trustctl")
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, path_type=Path),
              help='YAML configuration file (default: PKGTRUST_* environment)')
@click.option('--keyring', '-k', type=click.Path(file_okay=False, path_type=Path),
              help='Keyring directory')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, keyring: Path | None, debug: bool):
    """Verify package signatures and manage trusted keys."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    try:
        config = load_config(config_path)
        if keyring is not None:
            config.keyring_dir = keyring
    except Exception as e:
        handle_error(e, debug)
    ctx.obj['config'] = config


@cli.command()
@click.argument('packages', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option('--nodigest', is_flag=True, help='Skip digest checks')
@click.option('--nosignature', is_flag=True, help='Skip signature checks')
@click.option('--verbose', '-v', is_flag=True, help='Show one line per checked item')
@click.pass_context
def checksig(ctx: click.Context, packages: tuple[Path, ...], nodigest: bool, nosignature: bool,
             verbose: bool):
    """Check the digests and signatures of packages.

    Exit status is the number of packages that failed.

    Examples:
      trustctl checksig ./hello-1.0-1.rpm
      trustctl --keyring ./keys checksig -v ./hello-1.0-1.rpm
    """
    debug = ctx.obj['debug']
    config: TrustConfig = ctx.obj['config']

    flags = VerifyFlags(0)
    if nodigest:
        flags |= VerifyFlags.NODIGESTS
    if nosignature:
        flags |= VerifyFlags.NOSIGNATURES
    if verbose:
        config.verbose = True

    try:
        verifier = PackageVerifier(open_keyring(config), config, flags, echo=click.echo)
        failed = verifier.verify_paths(packages)
    except Exception as e:
        handle_error(e, debug)
    sys.exit(min(failed, MAX_EXIT_STATUS))


@cli.command('import')
@click.argument('sources', nargs=-1, required=True)
@click.pass_context
def import_keys(ctx: click.Context, sources: tuple[str, ...]):
    """Import armored public keys into the keyring.

    SOURCES are files, URLs, ``-`` for standard input, or key ids written
    as 0x followed by 8 or 16 hex digits, which are fetched from the
    configured keyserver.

    Examples:
      trustctl --keyring ./keys import ./RPM-GPG-KEY-example
      trustctl --keyring ./keys import 0x1234ABCD
    """
    debug = ctx.obj['debug']
    config: TrustConfig = ctx.obj['config']

    try:
        keyring = open_keyring(config)
        before = len(keyring)
        failed = import_pubkeys(keyring, sources, config)
    except Exception as e:
        handle_error(e, debug)

    if config.keyring_dir is None:
        click.echo("Warning: no keyring directory configured, keys are not kept", err=True)
    click.echo(f"Imported {len(keyring) - before} key(s), {failed} failure(s)")
    sys.exit(min(failed, MAX_EXIT_STATUS))


@cli.command()
@click.pass_context
def keys(ctx: click.Context):
    """List the keys in the keyring."""
    debug = ctx.obj['debug']
    config: TrustConfig = ctx.obj['config']

    try:
        keyring = open_keyring(config)
    except Exception as e:
        handle_error(e, debug)

    for cert in keyring:
        created = datetime.fromtimestamp(cert.primary.created, timezone.utc).date().isoformat()
        click.echo(f"{cert.key_id.hex()} {cert.primary.algorithm_name:<5} {created} {cert.user_ids[0]}")
        for subkey in cert.subkeys:
            click.echo(f"  sub {subkey.key_id.hex()} {subkey.algorithm_name}")
    if not len(keyring):
        click.echo("No keys in keyring")


@cli.command('gen-key')
@click.option('--out', '-o', required=True, type=click.Path(file_okay=False, path_type=Path),
              help='Output directory')
@click.option('--user-id', '-u', required=True, help='User id, e.g. "Packager <pkg@example.com>"')
@click.option('--algorithm', type=click.Choice(['rsa', 'ed25519']), default='rsa')
@click.option('--bits', type=int, default=3072, help='RSA key size')
@click.pass_context
def gen_key(ctx: click.Context, out: Path, user_id: str, algorithm: str, bits: int):
    """Generate a signing key and its self-signed public certificate.

    Writes secret.pem (PKCS#8, unencrypted) and public.asc (armored
    certificate, importable with 'trustctl import').
    """
    debug = ctx.obj['debug']

    try:
        if algorithm == 'rsa':
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        else:
            private_key = ed25519.Ed25519PrivateKey.generate()

        certificate = build_certificate(private_key, user_id)
        out.mkdir(parents=True, exist_ok=True)
        secret_path = out / "secret.pem"
        secret_path.write_bytes(private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ))
        secret_path.chmod(0o600)
        public_path = out / "public.asc"
        public_path.write_text(armor(certificate, ArmorType.PUBKEY), encoding="utf-8")

        click.echo("Key pair generated:")
        click.echo(f"  Secret key: {secret_path}")
        click.echo(f"  Certificate: {public_path}")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
