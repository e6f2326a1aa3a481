"""OpenPGP armor and packet codec.

Covers what package verification and key import need: ASCII armor with
CRC24, old and new format packet headers, v3/v4 signature packets, v4
public key packets (RSA, DSA, EdDSA), certificate boundaries and the
builders used to produce signatures and certificates.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
import struct
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from pkgtrust.digest import HASH_NAMES, new_hash

logger = logging.getLogger(__name__)

ARMOR_MARK = "-----BEGIN PGP "


class PGPError(Exception):
    """Malformed OpenPGP data."""
    pass


class PGPUnsupported(PGPError):
    """Well-formed OpenPGP data using an algorithm we do not implement."""
    pass


class ArmorType(Enum):
    """Kinds of ASCII armored blocks."""

    PUBKEY = "PUBLIC KEY BLOCK"
    SECKEY = "PRIVATE KEY BLOCK"
    SIGNATURE = "SIGNATURE"
    MESSAGE = "MESSAGE"


class PacketTag(IntEnum):
    """Packet tags handled here."""

    SIGNATURE = 2
    PUBLIC_KEY = 6
    MARKER = 10
    TRUST = 12
    USER_ID = 13
    PUBLIC_SUBKEY = 14
    USER_ATTRIBUTE = 17


class PubkeyAlgo(IntEnum):
    """Public key algorithm ids."""

    RSA = 1
    RSA_ENCRYPT = 2
    RSA_SIGN = 3
    ELGAMAL_ENCRYPT = 16
    DSA = 17
    ECDH = 18
    ECDSA = 19
    EDDSA = 22


PUBKEY_NAMES = {
    1: "RSA",
    2: "RSA",
    3: "RSA",
    16: "ELGAMAL",
    17: "DSA",
    18: "ECDH",
    19: "ECDSA",
    22: "EdDSA",
}

# Signature types
SIGTYPE_BINARY = 0x00
SIGTYPE_CERT_POSITIVE = 0x13
SIGTYPE_CERT_TYPES = (0x10, 0x11, 0x12, 0x13)
SIGTYPE_SUBKEY = 0x18

# Signature subpacket types
SUBPKT_CREATION_TIME = 2
SUBPKT_SIG_EXPIRE = 3
SUBPKT_KEY_EXPIRE = 9
SUBPKT_ISSUER = 16
SUBPKT_KEY_FLAGS = 27
SUBPKT_ISSUER_FPR = 33

_KNOWN_SUBPACKETS = frozenset({
    2, 3, 4, 5, 6, 7, 9, 10, 11, 12, 16, 20, 21, 22, 23, 24, 25, 26, 27, 28,
    29, 30, 31, 32, 33, 34, 35, 37, 38, 39,
})

ED25519_OID = bytes.fromhex("2b06010401da470f01")

_CRYPTO_HASHES: dict[int, type[hashes.HashAlgorithm]] = {
    1: hashes.MD5,
    2: hashes.SHA1,
    8: hashes.SHA256,
    9: hashes.SHA384,
    10: hashes.SHA512,
    11: hashes.SHA224,
}

CRC24_INIT = 0xB704CE
CRC24_POLY = 0x1864CFB


def crc24(data: bytes) -> bytes:
    """Armor checksum (RFC 4880 section 6.1)."""
    crc = CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= CRC24_POLY
    return (crc & 0xFFFFFF).to_bytes(3, "big")


def hash_class(algorithm: int) -> hashes.HashAlgorithm:
    """cryptography hash instance for an OpenPGP hash algorithm id."""
    try:
        return _CRYPTO_HASHES[algorithm]()
    except KeyError:
        raise PGPUnsupported(f"Unsupported hash algorithm {algorithm}") from None


# ---------------------------------------------------------------------------
# Armor

_BEGIN_RE = re.compile(r"^-----BEGIN PGP (.+?)-----\s*$")
_END_RE = re.compile(r"^-----END PGP (.+?)-----\s*$")


def parse_armored(text: str | bytes, dump: bool = False) -> tuple[ArmorType, bytes]:
    """Decode the first armored block in ``text``.

    Args:
        text: Text starting at (or before) an armor marker
        dump: Describe each decoded packet at INFO level

    Returns:
        Tuple of (armor type, raw packet bytes)

    Raises:
        PGPError: On missing markers, bad base64, CRC mismatch or an
            unknown armor type
    """
    if isinstance(text, bytes):
        text = text.decode("ascii", errors="replace")

    lines = iter(text.splitlines())
    kind_name = None
    for line in lines:
        m = _BEGIN_RE.match(line.strip())
        if m:
            kind_name = m.group(1)
            break
    if kind_name is None:
        raise PGPError("no armor header")

    try:
        kind = ArmorType(kind_name.replace("SECRET", "PRIVATE"))
    except ValueError:
        raise PGPError(f"unknown armor type {kind_name!r}") from None

    # Armor headers end at the first empty line
    for line in lines:
        if not line.strip():
            break
        if ":" not in line:
            raise PGPError("malformed armor header")
    else:
        raise PGPError("truncated armor")

    body = []
    crc = None
    ended = False
    for line in lines:
        line = line.strip()
        m = _END_RE.match(line)
        if m:
            if m.group(1) != kind_name:
                raise PGPError(f"armor end mismatch: {m.group(1)!r}")
            ended = True
            break
        if line.startswith("=") and len(line) == 5:
            crc = line[1:]
            continue
        body.append(line)
    if not ended:
        raise PGPError("missing armor end marker")

    try:
        data = base64.b64decode("".join(body), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PGPError(f"bad base64: {e}") from e

    if crc is not None:
        try:
            expected = base64.b64decode(crc, validate=True)
        except (binascii.Error, ValueError) as e:
            raise PGPError(f"bad armor checksum: {e}") from e
        if crc24(data) != expected:
            raise PGPError("armor checksum mismatch")

    if dump:
        dump_packets(data)
    return kind, data


def armor(data: bytes, kind: ArmorType = ArmorType.PUBKEY) -> str:
    """Encode ``data`` as an armored block."""
    encoded = base64.b64encode(data).decode("ascii")
    lines = [f"-----BEGIN PGP {kind.value}-----", ""]
    lines.extend(encoded[i:i + 64] for i in range(0, len(encoded), 64))
    lines.append("=" + base64.b64encode(crc24(data)).decode("ascii"))
    lines.append(f"-----END PGP {kind.value}-----")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Packets

@dataclass
class Packet:
    """A single packet: tag, body and its location in the source buffer."""

    tag: int
    body: bytes
    offset: int
    length: int  # header + body


def _packet_header(data: bytes, start: int) -> tuple[int, int, int]:
    """Return (tag, header length, body length) of the packet at ``start``."""
    if start >= len(data):
        raise PGPError("no packet data")
    ctb = data[start]
    if not ctb & 0x80:
        raise PGPError(f"invalid packet tag 0x{ctb:02X}")

    if not ctb & 0x40:
        tag = (ctb & 0x3C) >> 2
        ltype = ctb & 0x03
        if ltype == 3:
            return tag, 1, len(data) - start - 1
        size = 1 << ltype
        if start + 1 + size > len(data):
            raise PGPError("truncated packet header")
        length = int.from_bytes(data[start + 1:start + 1 + size], "big")
        return tag, 1 + size, length

    tag = ctb & 0x3F
    if start + 1 >= len(data):
        raise PGPError("truncated packet header")
    len1 = data[start + 1]
    if len1 < 192:
        return tag, 2, len1
    if len1 < 224:
        if start + 2 >= len(data):
            raise PGPError("truncated packet header")
        return tag, 3, ((len1 - 192) << 8) + data[start + 2] + 192
    if len1 == 255:
        if start + 6 > len(data):
            raise PGPError("truncated packet header")
        return tag, 6, struct.unpack(">I", data[start + 2:start + 6])[0]
    raise PGPError("unsupported partial body length")


def iter_packets(data: bytes) -> Iterator[Packet]:
    """Yield every packet in ``data``; a malformed one raises PGPError."""
    start = 0
    while start < len(data):
        tag, hlen, blen = _packet_header(data, start)
        if tag == 0:
            raise PGPError("tag 0 is reserved")
        end = start + hlen + blen
        if end > len(data):
            raise PGPError(f"packet at offset {start} truncated ({end - len(data)} bytes missing)")
        yield Packet(tag, data[start + hlen:end], start, hlen + blen)
        start = end


def build_packet(tag: int, body: bytes) -> bytes:
    """Frame ``body`` with a new format packet header."""
    n = len(body)
    if n < 192:
        length = bytes([n])
    elif n < 8384:
        n -= 192
        length = bytes([(n >> 8) + 192, n & 0xFF])
    else:
        length = b"\xff" + struct.pack(">I", n)
    return bytes([0xC0 | tag]) + length + body


def read_mpi(data: bytes, pos: int) -> tuple[int, int]:
    """Parse an MPI at ``pos``; return (value, position after it)."""
    if pos + 2 > len(data):
        raise PGPError("truncated MPI")
    bits = struct.unpack(">H", data[pos:pos + 2])[0]
    end = pos + 2 + (bits + 7) // 8
    if end > len(data):
        raise PGPError("truncated MPI")
    return int.from_bytes(data[pos + 2:end], "big"), end


def encode_mpi(value: int) -> bytes:
    return struct.pack(">H", value.bit_length()) + value.to_bytes((value.bit_length() + 7) // 8, "big")


def parse_subpackets(data: bytes) -> list[tuple[int, bool, bytes]]:
    """Return (type, critical, body) for each signature subpacket."""
    result = []
    pos = 0
    while pos < len(data):
        len1 = data[pos]
        if len1 < 192:
            start, length = 1, len1
        elif len1 < 255:
            if pos + 1 >= len(data):
                raise PGPError("truncated subpacket length")
            start, length = 2, ((len1 - 192) << 8) + data[pos + 1] + 192
        else:
            if pos + 5 > len(data):
                raise PGPError("truncated subpacket length")
            start, length = 5, struct.unpack(">I", data[pos + 1:pos + 5])[0]
        if length == 0 or pos + start + length > len(data):
            raise PGPError("not enough data for subpacket")
        sptype = data[pos + start]
        result.append((sptype & 0x7F, bool(sptype & 0x80), data[pos + start + 1:pos + start + length]))
        pos += start + length
    return result


def encode_subpacket(sptype: int, body: bytes) -> bytes:
    n = len(body) + 1
    if n < 192:
        length = bytes([n])
    else:
        length = b"\xff" + struct.pack(">I", n)
    return length + bytes([sptype]) + body


@dataclass
class SignaturePacket:
    """A parsed signature packet (v3 or v4)."""

    version: int
    sigtype: int
    pubkey_algorithm: int
    hash_algorithm: int
    created: int
    hash_prefix: bytes
    mpis: list[int]
    body: bytes
    hashed_end: int = 0
    issuer: bytes | None = None
    issuer_fpr: bytes | None = None
    expires: int | None = None  # seconds after creation
    key_expires: int | None = None  # seconds after key creation
    hashed_subpackets: list[tuple[int, bool, bytes]] = field(default_factory=list)

    @property
    def key_id(self) -> bytes | None:
        """Issuer key id, from the issuer or issuer fingerprint subpacket."""
        if self.issuer is not None:
            return self.issuer
        if self.issuer_fpr is not None:
            return self.issuer_fpr[-8:]
        return None

    @property
    def algorithm_name(self) -> str:
        pk = PUBKEY_NAMES.get(self.pubkey_algorithm, f"#{self.pubkey_algorithm}")
        return f"{pk}/{HASH_NAMES.get(self.hash_algorithm, f'#{self.hash_algorithm}')}"

    def trailer(self) -> bytes:
        """Bytes hashed after the signed data."""
        if self.version == 3:
            return self.body[2:7]
        return self.body[:self.hashed_end] + b"\x04\xff" + struct.pack(">I", self.hashed_end)

    @classmethod
    def parse(cls, body: bytes) -> SignaturePacket:
        """Parse a signature packet body."""
        if not body:
            raise PGPError("empty signature packet")
        version = body[0]
        if version == 3:
            return cls._parse_v3(body)
        if version == 4:
            return cls._parse_v4(body)
        raise PGPUnsupported(f"unsupported signature version {version}")

    @classmethod
    def _parse_v3(cls, body: bytes) -> SignaturePacket:
        if len(body) < 19 or body[1] != 5:
            raise PGPError("invalid v3 signature")
        sigtype, created, issuer, pkalgo, halgo, prefix = struct.unpack(">BI8sBB2s", body[2:19])
        return cls(
            version=3,
            sigtype=sigtype,
            pubkey_algorithm=pkalgo,
            hash_algorithm=halgo,
            created=created,
            hash_prefix=prefix,
            mpis=_read_mpis(body, 19, pkalgo),
            body=body,
            issuer=issuer,
        )

    @classmethod
    def _parse_v4(cls, body: bytes) -> SignaturePacket:
        if len(body) < 6:
            raise PGPError("truncated v4 signature")
        sigtype, pkalgo, halgo, count = struct.unpack(">3BH", body[1:6])
        hashed_end = 6 + count
        if hashed_end + 2 > len(body):
            raise PGPError("truncated hashed subpackets")
        hashed = parse_subpackets(body[6:hashed_end])
        (count,) = struct.unpack(">H", body[hashed_end:hashed_end + 2])
        unhashed_end = hashed_end + 2 + count
        if unhashed_end + 2 > len(body):
            raise PGPError("truncated unhashed subpackets")
        unhashed = parse_subpackets(body[hashed_end + 2:unhashed_end])

        sig = cls(
            version=4,
            sigtype=sigtype,
            pubkey_algorithm=pkalgo,
            hash_algorithm=halgo,
            created=0,
            hash_prefix=body[unhashed_end:unhashed_end + 2],
            mpis=_read_mpis(body, unhashed_end + 2, pkalgo),
            body=body,
            hashed_end=hashed_end,
            hashed_subpackets=hashed,
        )

        have_created = False
        for sptype, critical, spdata in hashed:
            if sptype == SUBPKT_CREATION_TIME and len(spdata) == 4:
                (sig.created,) = struct.unpack(">I", spdata)
                have_created = True
            elif sptype == SUBPKT_SIG_EXPIRE and len(spdata) == 4:
                (sig.expires,) = struct.unpack(">I", spdata)
            elif sptype == SUBPKT_KEY_EXPIRE and len(spdata) == 4:
                (sig.key_expires,) = struct.unpack(">I", spdata)
            elif critical and sptype not in _KNOWN_SUBPACKETS:
                raise PGPUnsupported(f"unknown critical subpacket {sptype}")
            sig._note_issuer(sptype, spdata)
        if not have_created:
            raise PGPError("signature time not in its hashed data")

        # Issuer may also live in the unhashed area
        for sptype, _critical, spdata in unhashed:
            sig._note_issuer(sptype, spdata)
        return sig

    def _note_issuer(self, sptype: int, spdata: bytes) -> None:
        if sptype == SUBPKT_ISSUER:
            if len(spdata) != 8:
                raise PGPError("invalid issuer key id length")
            if self.issuer is None:
                self.issuer = spdata
        elif sptype == SUBPKT_ISSUER_FPR and len(spdata) >= 21 and self.issuer_fpr is None:
            self.issuer_fpr = spdata[1:]


def _read_mpis(body: bytes, pos: int, pkalgo: int) -> list[int]:
    wanted = {1: 1, 2: 1, 3: 1, 17: 2, 19: 2, 22: 2}.get(pkalgo)
    mpis = []
    while pos < len(body) and (wanted is None or len(mpis) < wanted):
        value, pos = read_mpi(body, pos)
        mpis.append(value)
    if wanted is not None and (len(mpis) != wanted or pos != len(body)):
        raise PGPError("invalid signature MPI data")
    return mpis


def parse_signature(data: bytes) -> SignaturePacket:
    """Parse data holding exactly one signature packet."""
    packets = list(iter_packets(data))
    if len(packets) != 1 or packets[0].tag != PacketTag.SIGNATURE:
        raise PGPError("not a signature packet")
    return SignaturePacket.parse(packets[0].body)


@dataclass
class PublicKeyPacket:
    """A parsed public key or subkey packet."""

    version: int
    created: int
    algorithm: int
    params: dict[str, Any]
    body: bytes
    subkey: bool = False

    @classmethod
    def parse(cls, body: bytes, subkey: bool = False) -> PublicKeyPacket:
        if not body:
            raise PGPError("empty public key packet")
        version = body[0]
        if version == 4:
            if len(body) < 6:
                raise PGPError("truncated public key packet")
            created, algorithm = struct.unpack(">IB", body[1:6])
            pos = 6
        elif version in (2, 3):
            if len(body) < 8:
                raise PGPError("truncated public key packet")
            created, _validity, algorithm = struct.unpack(">IHB", body[1:8])
            pos = 8
        else:
            raise PGPUnsupported(f"unsupported public key version {version}")

        params: dict[str, Any] = {}
        if algorithm in (PubkeyAlgo.RSA, PubkeyAlgo.RSA_ENCRYPT, PubkeyAlgo.RSA_SIGN):
            params["n"], pos = read_mpi(body, pos)
            params["e"], pos = read_mpi(body, pos)
        elif algorithm == PubkeyAlgo.DSA:
            for name in ("p", "q", "g", "y"):
                params[name], pos = read_mpi(body, pos)
        elif algorithm == PubkeyAlgo.EDDSA:
            if pos >= len(body):
                raise PGPError("truncated EdDSA key")
            oidlen = body[pos]
            params["oid"] = body[pos + 1:pos + 1 + oidlen]
            point, pos = read_mpi(body, pos + 1 + oidlen)
            params["point"] = point
        else:
            # Parameters of other algorithms are kept opaque
            pos = len(body)
        if pos != len(body):
            raise PGPError("trailing data in public key packet")
        return cls(version, created, algorithm, params, body, subkey)

    @property
    def fingerprint(self) -> bytes:
        if self.version != 4:
            return hashlib.md5(self.body[8:]).digest()
        return hashlib.sha1(b"\x99" + struct.pack(">H", len(self.body)) + self.body).digest()

    @property
    def key_id(self) -> bytes:
        if self.version != 4:
            n = self.params.get("n")
            if n is None:
                raise PGPUnsupported("v3 key id needs an RSA key")
            return (n & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "big")
        return self.fingerprint[-8:]

    @property
    def algorithm_name(self) -> str:
        return PUBKEY_NAMES.get(self.algorithm, f"#{self.algorithm}")

    def verify(self, sig: SignaturePacket, digest: bytes) -> bool:
        """Check ``sig`` over a finished ``digest`` with this key.

        Raises:
            PGPUnsupported: Key or hash algorithm not implemented
        """
        if PUBKEY_NAMES.get(sig.pubkey_algorithm) != self.algorithm_name:
            return False
        try:
            if self.algorithm_name == "RSA":
                return self._verify_rsa(sig, digest)
            if self.algorithm == PubkeyAlgo.DSA:
                return self._verify_dsa(sig, digest)
            if self.algorithm == PubkeyAlgo.EDDSA:
                return self._verify_eddsa(sig, digest)
        except InvalidSignature:
            return False
        except (ValueError, OverflowError) as e:
            logger.debug("key %s: %s", self.key_id.hex(), e)
            return False
        raise PGPUnsupported(f"unsupported public key algorithm {self.algorithm_name}")

    def _verify_rsa(self, sig: SignaturePacket, digest: bytes) -> bool:
        key = rsa.RSAPublicNumbers(self.params["e"], self.params["n"]).public_key()
        size = (key.key_size + 7) // 8
        signature = sig.mpis[0].to_bytes(size, "big")
        halg = hash_class(sig.hash_algorithm)
        key.verify(signature, digest, padding.PKCS1v15(), Prehashed(halg))
        return True

    def _verify_dsa(self, sig: SignaturePacket, digest: bytes) -> bool:
        p = self.params
        key = dsa.DSAPublicNumbers(p["y"], dsa.DSAParameterNumbers(p["p"], p["q"], p["g"])).public_key()
        halg = hash_class(sig.hash_algorithm)
        key.verify(encode_dss_signature(sig.mpis[0], sig.mpis[1]), digest, Prehashed(halg))
        return True

    def _verify_eddsa(self, sig: SignaturePacket, digest: bytes) -> bool:
        if self.params["oid"] != ED25519_OID:
            raise PGPUnsupported("unsupported EdDSA curve")
        point = self.params["point"].to_bytes(33, "big")
        if point[0] != 0x40:
            raise PGPError("invalid Ed25519 point encoding")
        key = ed25519.Ed25519PublicKey.from_public_bytes(point[1:])
        signature = sig.mpis[0].to_bytes(32, "big") + sig.mpis[1].to_bytes(32, "big")
        key.verify(signature, digest)
        return True


# ---------------------------------------------------------------------------
# Certificates

@dataclass
class Certificate:
    """One transferable public key: primary key, user ids and subkeys."""

    primary: PublicKeyPacket
    subkeys: list[PublicKeyPacket]
    user_ids: list[str]
    data: bytes
    expires: int | None = None  # absolute, seconds since the epoch

    @property
    def key_id(self) -> bytes:
        return self.primary.key_id

    @property
    def fingerprint(self) -> bytes:
        return self.primary.fingerprint

    def keys(self) -> list[PublicKeyPacket]:
        return [self.primary, *self.subkeys]

    @classmethod
    def parse(cls, data: bytes) -> Certificate:
        """Parse exactly one certificate.

        Raises:
            PGPError: If ``data`` is not a single well-formed certificate
        """
        packets = list(iter_packets(data))
        if not packets or packets[0].tag != PacketTag.PUBLIC_KEY:
            raise PGPError("certificate does not start with a public key packet")
        primary = PublicKeyPacket.parse(packets[0].body)
        subkeys = []
        user_ids = []
        expires = None
        last = PacketTag.PUBLIC_KEY
        for packet in packets[1:]:
            if packet.tag == PacketTag.PUBLIC_KEY:
                raise PGPError("more than one certificate in data")
            if packet.tag == PacketTag.USER_ID:
                user_ids.append(packet.body.decode("utf-8", errors="replace"))
            elif packet.tag == PacketTag.PUBLIC_SUBKEY:
                subkeys.append(PublicKeyPacket.parse(packet.body, subkey=True))
            elif packet.tag == PacketTag.SIGNATURE:
                sig = SignaturePacket.parse(packet.body)
                if (last == PacketTag.USER_ID and sig.sigtype in SIGTYPE_CERT_TYPES
                        and sig.key_expires and sig.key_id == primary.key_id):
                    expires = primary.created + sig.key_expires
                continue
            elif packet.tag not in (PacketTag.TRUST, PacketTag.MARKER, PacketTag.USER_ATTRIBUTE):
                raise PGPError(f"unexpected packet of type {packet.tag} in certificate")
            last = packet.tag
        if not user_ids:
            raise PGPError("missing user id packet")
        return cls(primary, subkeys, user_ids, data, expires)


def certificate_length(data: bytes) -> int:
    """Length of the certificate at the start of a concatenation.

    The certificate runs up to the next public key packet or the end of
    ``data``.

    Raises:
        PGPError: If the data does not start with a public key packet or a
            packet of the certificate is malformed or truncated
    """
    start = 0
    while start < len(data):
        tag, hlen, blen = _packet_header(data, start)
        if start == 0 and tag != PacketTag.PUBLIC_KEY:
            raise PGPError(f"expected a public key packet, got type {tag}")
        if start > 0 and tag == PacketTag.PUBLIC_KEY:
            return start
        if start + hlen + blen > len(data):
            raise PGPError(f"packet at offset {start} truncated")
        start += hlen + blen
    if start == 0:
        raise PGPError("no certificate data")
    return start


def describe_packet(packet: Packet) -> str:
    """One-line human description of a packet."""
    try:
        if packet.tag == PacketTag.SIGNATURE:
            sig = SignaturePacket.parse(packet.body)
            keyid = sig.key_id.hex() if sig.key_id else "none"
            return (f"sig(v{sig.version}, type 0x{sig.sigtype:02x}, {sig.algorithm_name}, "
                    f"created {sig.created}, key id {keyid})")
        if packet.tag in (PacketTag.PUBLIC_KEY, PacketTag.PUBLIC_SUBKEY):
            key = PublicKeyPacket.parse(packet.body, packet.tag == PacketTag.PUBLIC_SUBKEY)
            desc = "pubsubkey" if key.subkey else "pubkey"
            return f"{desc}(v{key.version}, {key.algorithm_name}, created {key.created}, key id {key.key_id.hex()})"
        if packet.tag == PacketTag.USER_ID:
            return f"uid({packet.body.decode('utf-8', errors='replace')!r})"
    except PGPError as e:
        return f"packet type {packet.tag} (unparsable: {e})"
    return f"packet type {packet.tag}, {len(packet.body)} bytes"


def dump_packets(data: bytes) -> None:
    """Describe every packet of ``data`` at INFO level.

    Stops at the first malformed packet; nothing is raised.
    """
    try:
        for packet in iter_packets(data):
            logger.info("%s", describe_packet(packet))
    except PGPError as e:
        logger.info("unparsable packet data: %s", e)


# ---------------------------------------------------------------------------
# Builders

def public_key_body(key: Any, created: int) -> bytes:
    """v4 public key packet body for a cryptography public key."""
    if isinstance(key, rsa.RSAPublicKey):
        nums = key.public_numbers()
        return struct.pack(">BIB", 4, created, PubkeyAlgo.RSA) + encode_mpi(nums.n) + encode_mpi(nums.e)
    if isinstance(key, dsa.DSAPublicKey):
        nums = key.public_numbers()
        pn = nums.parameter_numbers
        return (struct.pack(">BIB", 4, created, PubkeyAlgo.DSA) + encode_mpi(pn.p)
                + encode_mpi(pn.q) + encode_mpi(pn.g) + encode_mpi(nums.y))
    if isinstance(key, ed25519.Ed25519PublicKey):
        raw = key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
        return (struct.pack(">BIBB", 4, created, PubkeyAlgo.EDDSA, len(ED25519_OID)) + ED25519_OID
                + encode_mpi(int.from_bytes(b"\x40" + raw, "big")))
    raise PGPUnsupported(f"cannot encode {type(key).__name__}")


def _sign_digest(private_key: Any, digest: bytes, hash_algorithm: int) -> tuple[int, list[int]]:
    """Return (pubkey algorithm, signature MPIs) for a finished digest."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        raw = private_key.sign(digest, padding.PKCS1v15(), Prehashed(hash_class(hash_algorithm)))
        return PubkeyAlgo.RSA, [int.from_bytes(raw, "big")]
    if isinstance(private_key, dsa.DSAPrivateKey):
        r, s = decode_dss_signature(private_key.sign(digest, Prehashed(hash_class(hash_algorithm))))
        return PubkeyAlgo.DSA, [r, s]
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        raw = private_key.sign(digest)
        return PubkeyAlgo.EDDSA, [int.from_bytes(raw[:32], "big"), int.from_bytes(raw[32:], "big")]
    raise PGPUnsupported(f"cannot sign with {type(private_key).__name__}")


def build_signature(
    private_key: Any,
    key: PublicKeyPacket,
    ctx: Any,
    sigtype: int = SIGTYPE_BINARY,
    hash_algorithm: int = 8,
    created: int | None = None,
    extra_hashed: bytes = b"",
) -> bytes:
    """Finish a hash context over signed data and return a signature packet.

    Args:
        private_key: cryptography private key matching ``key``
        key: Public key packet of the signer
        ctx: hashlib context already fed with the signed data
        sigtype: Signature type
        hash_algorithm: OpenPGP id of the algorithm ``ctx`` uses
        created: Signature creation time (default: now)
        extra_hashed: Additional encoded hashed subpackets
    """
    created = int(time.time()) if created is None else created
    pkalgo = {"RSA": PubkeyAlgo.RSA, "DSA": PubkeyAlgo.DSA, "EdDSA": PubkeyAlgo.EDDSA}[key.algorithm_name]
    hashed = (encode_subpacket(SUBPKT_CREATION_TIME, struct.pack(">I", created))
              + encode_subpacket(SUBPKT_ISSUER_FPR, b"\x04" + key.fingerprint)
              + extra_hashed)
    head = struct.pack(">4BH", 4, sigtype, pkalgo, hash_algorithm, len(hashed)) + hashed
    ctx.update(head + b"\x04\xff" + struct.pack(">I", len(head)))
    digest = ctx.digest()
    _, mpis = _sign_digest(private_key, digest, hash_algorithm)
    unhashed = encode_subpacket(SUBPKT_ISSUER, key.key_id)
    body = (head + struct.pack(">H", len(unhashed)) + unhashed + digest[:2]
            + b"".join(encode_mpi(m) for m in mpis))
    return build_packet(PacketTag.SIGNATURE, body)


def sign_data(private_key: Any, key: PublicKeyPacket, data: bytes, hash_algorithm: int = 8,
              created: int | None = None) -> bytes:
    """Binary signature packet over ``data``."""
    ctx = new_hash(hash_algorithm)
    ctx.update(data)
    return build_signature(private_key, key, ctx, hash_algorithm=hash_algorithm, created=created)


def build_certificate(
    private_key: Any,
    user_id: str,
    created: int | None = None,
    expires_in: int | None = None,
) -> bytes:
    """Self-signed certificate (public key, user id, certification)."""
    created = int(time.time()) if created is None else created
    body = public_key_body(private_key.public_key(), created)
    key = PublicKeyPacket.parse(body)
    uid = user_id.encode("utf-8")

    ctx = new_hash(8)
    ctx.update(b"\x99" + struct.pack(">H", len(body)) + body)
    ctx.update(b"\xb4" + struct.pack(">I", len(uid)) + uid)
    extra = encode_subpacket(SUBPKT_KEY_FLAGS, b"\x03")
    if expires_in is not None:
        extra += encode_subpacket(SUBPKT_KEY_EXPIRE, struct.pack(">I", expires_in))
    selfsig = build_signature(private_key, key, ctx, sigtype=SIGTYPE_CERT_POSITIVE,
                              created=created, extra_hashed=extra)
    return (build_packet(PacketTag.PUBLIC_KEY, body) + build_packet(PacketTag.USER_ID, uid)
            + selfsig)
