"""Importing armored public keys into a keyring.

A source may hold several armored blocks and each block several
concatenated certificates. Every certificate is imported on its own;
a bad certificate, block or source is counted and skipped while the
rest are still processed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from pkgtrust.config import TrustConfig
from pkgtrust.keyring import Keyring, KeyringError
from pkgtrust.pgp import ARMOR_MARK, ArmorType, PGPError, certificate_length, parse_armored
from pkgtrust.sources import SourceError, slurp

logger = logging.getLogger(__name__)

_KEYID_RE = re.compile(r"0x([0-9A-Fa-f]{8}|[0-9A-Fa-f]{16})")

# First octets of a public key packet (old format 1/2 byte length, new format)
_PUBKEY_CTBS = frozenset({0x98, 0x99, 0x9A, 0xC6})


def looks_like_keyid(token: str) -> bool:
    """True for ``0x`` followed by exactly 8 or 16 hex digits."""
    return _KEYID_RE.fullmatch(token) is not None


def expand_keyserver_query(token: str, query: str) -> str | None:
    """Keyserver URL for a key id token, or None if the template does not apply."""
    if not query or "{keyid}" not in query:
        return None
    return query.replace("{keyid}", token[2:])


def resolve_source(token: str, config: TrustConfig) -> str:
    """Source to read for ``token``: the keyserver URL for key ids, else the token."""
    if looks_like_keyid(token):
        url = expand_keyserver_query(token, config.keyserver_query)
        if url is not None:
            return url
    return token


@dataclass
class CertificateSlice:
    """One step of a walk over concatenated certificates.

    ``remaining`` is the number of bytes left after this slice. A slice
    with ``error`` set covers bytes that could not be delimited.
    """

    data: bytes
    remaining: int
    error: str | None = None


def _resync(data: bytes, start: int, length_fn: Callable[[bytes], int]) -> int:
    for pos in range(start + 1, len(data)):
        if data[pos] not in _PUBKEY_CTBS:
            continue
        try:
            length_fn(data[pos:])
        except PGPError:
            continue
        return pos
    return len(data)


def iter_certificates(
    data: bytes,
    length_fn: Callable[[bytes], int] = certificate_length,
) -> Iterator[CertificateSlice]:
    """Walk concatenated certificates in ``data``.

    The sequence is lazy and finite. When ``length_fn`` fails, the bytes up
    to the next position where a certificate can be delimited are yielded
    as a single slice carrying the error.
    """
    pos = 0
    while pos < len(data):
        try:
            length = length_fn(data[pos:])
            error = None
        except PGPError as e:
            length = _resync(data, pos, length_fn) - pos
            error = str(e)
        end = pos + length
        yield CertificateSlice(data[pos:end], len(data) - end, error)
        pos = end


def _import_block(keyring: Keyring, name: str, keyno: int, packets: bytes) -> int:
    failures = 0
    for cert in iter_certificates(packets):
        if cert.error is not None:
            logger.debug("%s: key %d: %s", name, keyno, cert.error)
            logger.error("%s: key %d import failed.", name, keyno)
            failures += 1
            continue
        try:
            keyring.import_certificate(cert.data)
        except KeyringError as e:
            logger.debug("%s: key %d: %s", name, keyno, e)
            logger.error("%s: key %d import failed.", name, keyno)
            failures += 1
    return failures


def import_buffer(keyring: Keyring, name: str, buf: bytes, dump: bool = False) -> int:
    """Import every armored public key block found in ``buf``.

    Args:
        keyring: Destination keyring
        name: Source name used in log messages
        buf: Source content
        dump: Describe the decoded packets at INFO level

    Returns:
        Number of failed certificates and blocks
    """
    mark = ARMOR_MARK.encode("ascii")
    failures = 0
    keyno = 1
    start = buf.find(mark)

    while True:
        kind = None
        if start >= 0:
            try:
                kind, packets = parse_armored(buf[start:], dump=dump)
            except PGPError as e:
                logger.debug("%s: key %d: %s", name, keyno, e)

        if kind is ArmorType.PUBKEY:
            failures += _import_block(keyring, name, keyno, packets)
        else:
            logger.error("%s: key %d not an armored public key.", name, keyno)
            failures += 1

        if start < 0:
            break
        start = buf.find(mark, start + len(mark))
        if start < 0:
            break
        keyno += 1

    return failures


def import_pubkeys(
    keyring: Keyring,
    sources: Iterable[str],
    config: TrustConfig | None = None,
    reader: Callable[[str, int], bytes] = slurp,
) -> int:
    """Import public keys from files, URLs or ``0x<keyid>`` tokens.

    A key id is looked up on the configured keyserver first; if that gives
    nothing usable the token is read as a literal path.

    Args:
        keyring: Destination keyring
        sources: Source tokens
        config: Settings (default: TrustConfig())
        reader: Function returning the content of a source

    Returns:
        Total failure count; 0 means everything was imported
    """
    config = config or TrustConfig()
    failures = 0

    for token in sources:
        candidates = [resolve_source(token, config)]
        if candidates[0] != token:
            candidates.append(token)

        buf = None
        reason = None
        for name in candidates:
            try:
                data = reader(name, config.timeout)
            except SourceError as e:
                reason = str(e)
                continue
            if len(data) < config.min_key_bytes:
                reason = f"only {len(data)} bytes"
                continue
            buf = data
            break

        if buf is None:
            logger.error("%s: import read failed(%s).", token, reason)
            failures += 1
            continue
        failures += import_buffer(keyring, name, buf, dump=config.dump_packets)

    return failures
