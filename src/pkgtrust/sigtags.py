"""Signature header items: classification and enumeration.

Every tag of a signature header that declares a check is described by a
static table entry giving its kind, the byte range it covers, the verify
flag that disables it and, for digests, the hash algorithm. Signature
tags resolve their hash algorithm from the embedded OpenPGP packet.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum, IntFlag

from pkgtrust.header import (
    RPMTAG_PAYLOADDIGEST,
    RPMTAG_PAYLOADDIGESTALGO,
    Header,
    HeaderEntry,
    TagType,
)
from pkgtrust.pgp import PGPError, SignaturePacket, parse_signature

# Signature header tags
RPMSIGTAG_DSA = 267
RPMSIGTAG_RSA = 268
RPMSIGTAG_SHA1 = 269
RPMSIGTAG_LONGSIZE = 270
RPMSIGTAG_SHA256 = 273
RPMSIGTAG_SIZE = 1000
RPMSIGTAG_PGP = 1002
RPMSIGTAG_MD5 = 1004
RPMSIGTAG_GPG = 1005
RPMSIGTAG_PGP5 = 1006
RPMSIGTAG_PAYLOADSIZE = 1007
RPMSIGTAG_RESERVEDSPACE = 1008

HASH_MD5 = 1
HASH_SHA1 = 2
HASH_SHA256 = 8


class SignatureRange(IntFlag):
    """Byte ranges a digest or signature covers."""

    HEADER = 1 << 0
    PAYLOAD = 1 << 1


COMBINED = SignatureRange.HEADER | SignatureRange.PAYLOAD


class VerifyFlags(IntFlag):
    """Bits selecting which checks to skip."""

    NOHDRCHK = 1 << 0
    NEEDPAYLOAD = 1 << 1
    NOSHA1HEADER = 1 << 8
    NOSHA256HEADER = 1 << 9
    NODSAHEADER = 1 << 10
    NORSAHEADER = 1 << 11
    NOPAYLOAD = 1 << 16
    NOMD5 = 1 << 17
    NODSA = 1 << 18
    NORSA = 1 << 19

    NODIGESTS = NOSHA1HEADER | NOSHA256HEADER | NOPAYLOAD | NOMD5
    NOSIGNATURES = NODSAHEADER | NORSAHEADER | NODSA | NORSA


class SignatureKind(Enum):
    """What a signature header item checks."""

    SIZE = "size"
    LONGSIZE = "longsize"
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    RSA = "rsa"
    DSA = "dsa"
    PGP = "pgp"
    PGP5 = "pgp5"
    GPG = "gpg"
    PAYLOAD = "payload"
    UNKNOWN = "unknown"


class SigType(Enum):
    DIGEST = "digest"
    SIGNATURE = "signature"
    OTHER = "other"


@dataclass(frozen=True)
class TagInfo:
    """Static classification of a signature header tag."""

    kind: SignatureKind
    sigtype: SigType
    range: SignatureRange
    disabler: VerifyFlags
    hash_algorithm: int
    display_name: str
    value_type: TagType | None = None


_NONE = VerifyFlags(0)

TAG_TABLE: dict[int, TagInfo] = {
    RPMSIGTAG_SIZE: TagInfo(SignatureKind.SIZE, SigType.OTHER, COMBINED, _NONE, 0, "size"),
    RPMSIGTAG_LONGSIZE: TagInfo(SignatureKind.LONGSIZE, SigType.OTHER, COMBINED, _NONE, 0, "size"),
    RPMSIGTAG_PGP: TagInfo(SignatureKind.PGP, SigType.SIGNATURE, COMBINED,
                           VerifyFlags.NORSA, 0, "pgp", TagType.BIN),
    RPMSIGTAG_PGP5: TagInfo(SignatureKind.PGP5, SigType.SIGNATURE, COMBINED,
                            VerifyFlags.NORSA, 0, "pgp", TagType.BIN),
    RPMSIGTAG_GPG: TagInfo(SignatureKind.GPG, SigType.SIGNATURE, COMBINED,
                           VerifyFlags.NODSA, 0, "gpg", TagType.BIN),
    RPMSIGTAG_MD5: TagInfo(SignatureKind.MD5, SigType.DIGEST, COMBINED,
                           VerifyFlags.NOMD5, HASH_MD5, "md5", TagType.BIN),
    RPMSIGTAG_SHA1: TagInfo(SignatureKind.SHA1, SigType.DIGEST, SignatureRange.HEADER,
                            VerifyFlags.NOSHA1HEADER, HASH_SHA1, "sha1", TagType.STRING),
    RPMSIGTAG_SHA256: TagInfo(SignatureKind.SHA256, SigType.DIGEST, SignatureRange.HEADER,
                              VerifyFlags.NOSHA256HEADER, HASH_SHA256, "sha256", TagType.STRING),
    RPMSIGTAG_DSA: TagInfo(SignatureKind.DSA, SigType.SIGNATURE, SignatureRange.HEADER,
                           VerifyFlags.NODSAHEADER, 0, "dsa", TagType.BIN),
    RPMSIGTAG_RSA: TagInfo(SignatureKind.RSA, SigType.SIGNATURE, SignatureRange.HEADER,
                           VerifyFlags.NORSAHEADER, 0, "rsa", TagType.BIN),
    RPMTAG_PAYLOADDIGEST: TagInfo(SignatureKind.PAYLOAD, SigType.DIGEST, SignatureRange.PAYLOAD,
                                  VerifyFlags.NOPAYLOAD, HASH_SHA256, "payload",
                                  TagType.STRING_ARRAY),
}

UNKNOWN_TAG = TagInfo(SignatureKind.UNKNOWN, SigType.OTHER, COMBINED, _NONE, 0, "unknown")


def tag_info(tag: int) -> TagInfo:
    """Table entry for ``tag``; unrecognised tags get the sentinel entry."""
    return TAG_TABLE.get(tag, UNKNOWN_TAG)


@dataclass(frozen=True)
class SignatureItem:
    """One declared check from a signature header."""

    tag: int
    kind: SignatureKind
    sigtype: SigType
    range: SignatureRange
    disabler: VerifyFlags
    hash_algorithm: int
    display_name: str
    value: object = None
    expected: str | None = None
    signature: SignaturePacket | None = None
    error: str | None = None

    @property
    def ctx_id(self) -> int:
        return self.tag


def _expected_digest(entry: HeaderEntry) -> str:
    if entry.type == TagType.BIN:
        return bytes(entry.value).hex()
    if entry.type == TagType.STRING_ARRAY:
        return entry.value[0].lower()
    return entry.value.lower()


def parse_item(entry: HeaderEntry, sigh: Header) -> SignatureItem:
    """Build a SignatureItem from one signature header entry.

    A malformed value on a known tag gives an item carrying ``error``.
    """
    info = tag_info(entry.tag)
    hash_algorithm = info.hash_algorithm
    sigtype = info.sigtype
    rng = info.range
    expected = None
    signature = None
    error = None

    if info.value_type is not None and entry.type != info.value_type:
        error = f"{info.display_name} tag {entry.tag}: BAD, invalid type {entry.type.name}"
    elif info.sigtype is SigType.DIGEST:
        expected = _expected_digest(entry)
        if info.kind is SignatureKind.PAYLOAD:
            algo = sigh.get(RPMTAG_PAYLOADDIGESTALGO)
            if algo:
                hash_algorithm = algo[0]
    elif info.sigtype is SigType.SIGNATURE:
        try:
            signature = parse_signature(bytes(entry.value))
            hash_algorithm = signature.hash_algorithm
        except PGPError as e:
            error = f"{info.display_name} tag {entry.tag}: BAD, {e}"
    elif info.kind is SignatureKind.UNKNOWN and entry.type == TagType.BIN:
        # Newer signature kinds still carry an OpenPGP packet
        try:
            signature = parse_signature(bytes(entry.value))
            hash_algorithm = signature.hash_algorithm
            sigtype = SigType.SIGNATURE
        except PGPError:
            pass

    return SignatureItem(
        tag=entry.tag,
        kind=info.kind,
        sigtype=sigtype,
        range=rng,
        disabler=info.disabler,
        hash_algorithm=hash_algorithm,
        display_name=info.display_name,
        value=entry.value,
        expected=expected,
        signature=signature,
        error=error,
    )


def is_disabled(item: SignatureItem, flags: VerifyFlags) -> bool:
    """Whether ``item`` is excluded from verification.

    Items with no hash algorithm are excluded unless they failed to parse.
    """
    if not item.hash_algorithm and item.error is None:
        return True
    if flags & item.disabler:
        return True
    if flags & VerifyFlags.NEEDPAYLOAD and item.range & SignatureRange.PAYLOAD:
        return True
    return False


def iter_items(sigh: Header, flags: VerifyFlags = VerifyFlags(0)) -> Iterator[SignatureItem]:
    """Yield the enabled items of ``sigh`` in header storage order."""
    for entry in sigh:
        item = parse_item(entry, sigh)
        if is_disabled(item, flags):
            continue
        yield item
