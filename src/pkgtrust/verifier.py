"""Per-item digest and signature verification."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pkgtrust.digest import HASH_NAMES
from pkgtrust.keyring import Keyring
from pkgtrust.pgp import PGPError, PGPUnsupported
from pkgtrust.sigtags import COMBINED, SignatureItem, SignatureRange, SigType

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """Result of checking one item; the value is the text shown to users."""

    OK = "OK"
    FAIL = "BAD"
    NOKEY = "NOKEY"
    NOTTRUSTED = "NOTTRUSTED"
    UNSUPPORTED = "UNSUPPORTED"

    @property
    def ok(self) -> bool:
        return self is Outcome.OK


def _range_prefix(item: SignatureItem) -> str:
    if item.range == SignatureRange.HEADER:
        return "Header "
    if item.range == SignatureRange.PAYLOAD:
        return "Payload "
    return ""


def describe(item: SignatureItem) -> str:
    """Human readable name of an item, e.g. ``Header SHA256 digest``."""
    prefix = _range_prefix(item)
    if item.sigtype is SigType.DIGEST:
        name = HASH_NAMES.get(item.hash_algorithm, item.display_name.upper())
        return f"{prefix}{name} digest"
    if item.signature is not None:
        sig = item.signature
        return f"{prefix}V{sig.version} {sig.algorithm_name} Signature"
    if item.range == COMBINED and item.sigtype is SigType.OTHER:
        return f"{item.display_name.capitalize()} tag {item.tag}"
    return f"{prefix}{item.display_name.upper()} Signature"


def _verify_digest(item: SignatureItem, ctx: Any) -> tuple[Outcome, str]:
    descr = describe(item)
    calculated = ctx.hexdigest()
    if item.expected is not None and calculated == item.expected:
        return Outcome.OK, f"{descr}: OK"
    return Outcome.FAIL, f"{descr}: BAD (Expected {item.expected} != {calculated})"


def _verify_pgp(keyring: Keyring, item: SignatureItem, ctx: Any) -> tuple[Outcome, str]:
    sig = item.signature
    descr = describe(item)
    key_id = sig.key_id
    key_text = key_id[-4:].hex() if key_id else "(none)"
    descr = f"{descr}, key ID {key_text}"

    ctx.update(sig.trailer())
    digest = ctx.digest()
    if digest[:2] != sig.hash_prefix:
        return Outcome.FAIL, f"{descr}: BAD"

    found = keyring.lookup(key_id) if key_id else None
    if found is None:
        return Outcome.NOKEY, f"{descr}: NOKEY"
    cert, key = found

    if sig.created < key.created:
        logger.debug("key %s created after signature", key_id.hex())
        return Outcome.NOTTRUSTED, f"{descr}: NOTTRUSTED"
    if cert.expires is not None and sig.created > cert.expires:
        logger.debug("key %s expired at signing time", key_id.hex())
        return Outcome.NOTTRUSTED, f"{descr}: NOTTRUSTED"

    try:
        valid = key.verify(sig, digest)
    except PGPUnsupported as e:
        logger.debug("%s: %s", descr, e)
        return Outcome.UNSUPPORTED, f"{descr}: UNSUPPORTED"
    except PGPError as e:
        logger.debug("%s: %s", descr, e)
        valid = False

    if valid:
        return Outcome.OK, f"{descr}: OK"
    return Outcome.FAIL, f"{descr}: BAD"


def verify_signature(keyring: Keyring, item: SignatureItem, ctx: Any) -> tuple[Outcome, str]:
    """Check one item against a snapshot of its digest context.

    Args:
        keyring: Keys trusted for signatures
        item: Item to check
        ctx: Private copy of the item's digest context, or None when no
            context could be created for its hash algorithm

    Returns:
        (outcome, message); cryptographic failures never raise
    """
    if item.error is not None:
        return Outcome.FAIL, item.error
    if ctx is None:
        algo = HASH_NAMES.get(item.hash_algorithm, f"#{item.hash_algorithm}")
        return Outcome.UNSUPPORTED, f"{describe(item)}: UNSUPPORTED (hash {algo})"
    if item.sigtype is SigType.DIGEST:
        return _verify_digest(item, ctx)
    if item.sigtype is SigType.SIGNATURE and item.signature is not None:
        return _verify_pgp(keyring, item, ctx)
    return Outcome.UNSUPPORTED, f"{describe(item)}: UNSUPPORTED"
