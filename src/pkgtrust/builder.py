"""Writing signed packages.

PackageBuilder produces a complete package: lead, signature header,
immutable main header and payload. The signature header carries the
header digests, the combined MD5 and size, and for every signer a
header-only signature plus a header+payload signature.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pkgtrust.header import (
    RPMTAG_HEADERIMMUTABLE,
    RPMTAG_HEADERSIGNATURES,
    RPMTAG_NAME,
    RPMTAG_PAYLOADDIGEST,
    RPMTAG_PAYLOADDIGESTALGO,
    RPMTAG_RELEASE,
    RPMTAG_VERSION,
    TagType,
    encode_header,
    encode_lead,
    pad_length,
)
from pkgtrust.pgp import Certificate, PublicKeyPacket, PubkeyAlgo, sign_data
from pkgtrust.sigtags import (
    RPMSIGTAG_DSA,
    RPMSIGTAG_GPG,
    RPMSIGTAG_MD5,
    RPMSIGTAG_PGP,
    RPMSIGTAG_RSA,
    RPMSIGTAG_SHA1,
    RPMSIGTAG_SHA256,
    RPMSIGTAG_SIZE,
)

logger = logging.getLogger(__name__)

DEFAULT_DIGESTS = ("sha1", "sha256", "md5")


@dataclass
class _Signer:
    private_key: Any
    key: PublicKeyPacket
    created: int | None = None


@dataclass
class PackageBuilder:
    """Assembles a package from a name, extra header entries and a payload."""

    name: str
    payload: bytes = b""
    version: str = "1.0"
    release: str = "1"
    header_entries: list[tuple[int, TagType, Any]] = field(default_factory=list)
    digests: tuple[str, ...] = DEFAULT_DIGESTS
    payload_digest: bool = True
    extra_signature_tags: list[tuple[int, TagType, Any]] = field(default_factory=list)
    _signers: list[_Signer] = field(default_factory=list, init=False, repr=False)

    def sign_with(self, private_key: Any, certificate: bytes, created: int | None = None) -> PackageBuilder:
        """Add a signer.

        RSA keys produce RSA (header) and PGP (header+payload) tags, other
        keys DSA and GPG tags.
        """
        cert = Certificate.parse(certificate)
        self._signers.append(_Signer(private_key, cert.primary, created))
        return self

    def add_signature_tag(self, tag: int, type_: TagType, value: Any) -> PackageBuilder:
        """Add a raw signature header entry."""
        self.extra_signature_tags.append((tag, type_, value))
        return self

    def main_header(self) -> bytes:
        entries: list[tuple[int, TagType, Any]] = [
            (RPMTAG_NAME, TagType.STRING, self.name),
            (RPMTAG_VERSION, TagType.STRING, self.version),
            (RPMTAG_RELEASE, TagType.STRING, self.release),
        ]
        entries.extend(self.header_entries)
        if self.payload_digest:
            entries.append((RPMTAG_PAYLOADDIGEST, TagType.STRING_ARRAY,
                            [hashlib.sha256(self.payload).hexdigest()]))
            entries.append((RPMTAG_PAYLOADDIGESTALGO, TagType.INT32, [8]))
        return encode_header(sorted(entries, key=lambda e: e[0]), RPMTAG_HEADERIMMUTABLE)

    def signature_header(self, header: bytes) -> bytes:
        signed = header + self.payload
        entries: list[tuple[int, TagType, Any]] = []
        if "sha1" in self.digests:
            entries.append((RPMSIGTAG_SHA1, TagType.STRING, hashlib.sha1(header).hexdigest()))
        if "sha256" in self.digests:
            entries.append((RPMSIGTAG_SHA256, TagType.STRING, hashlib.sha256(header).hexdigest()))
        if "md5" in self.digests:
            entries.append((RPMSIGTAG_MD5, TagType.BIN, hashlib.md5(signed).digest()))
            entries.append((RPMSIGTAG_SIZE, TagType.INT32, [len(signed)]))

        for signer in self._signers:
            if signer.key.algorithm == PubkeyAlgo.RSA:
                header_tag, combined_tag = RPMSIGTAG_RSA, RPMSIGTAG_PGP
            else:
                header_tag, combined_tag = RPMSIGTAG_DSA, RPMSIGTAG_GPG
            entries.append((header_tag, TagType.BIN,
                            sign_data(signer.private_key, signer.key, header, created=signer.created)))
            entries.append((combined_tag, TagType.BIN,
                            sign_data(signer.private_key, signer.key, signed, created=signer.created)))

        entries.extend(self.extra_signature_tags)
        return encode_header(sorted(entries, key=lambda e: e[0]), RPMTAG_HEADERSIGNATURES)

    def build(self) -> bytes:
        """Return the complete package."""
        header = self.main_header()
        sigh = self.signature_header(header)
        # Signature header data store is padded to 8 bytes
        dl = len(sigh) - 16 - int.from_bytes(sigh[8:12], "big") * 16
        return encode_lead(self.name) + sigh + b"\0" * pad_length(dl) + header + self.payload

    def write(self, path: Path) -> Path:
        """Write the package to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.build())
        logger.debug("wrote %s (%d signers)", path, len(self._signers))
        return path
