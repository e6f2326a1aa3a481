"""Package lead and header blob codec.

The on-disk layout is the RPM one: a 96 byte lead, a signature header
padded to an 8 byte boundary, the immutable main header and the payload.
A header blob is a 16 byte intro (magic, index length, data length), the
index entries and the data store. Reads go through a DigestStream so
header bytes feed whichever digest contexts are active.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from pkgtrust.digest import DigestStream

LEAD_MAGIC = b"\xed\xab\xee\xdb"
LEAD_SIZE = 96
LEAD_FORMAT = ">4sBBhh66shh16s"
HEADER_SIGNED_TYPE = 5

HEADER_MAGIC = b"\x8e\xad\xe8\x01\x00\x00\x00\x00"
INTRO_SIZE = 16
ENTRY_SIZE = 16
REGION_TRAILER_SIZE = 16

MAX_INDEX_ENTRIES = 0xFFFF
MAX_DATA_SIZE = 256 * 1024 * 1024

# Region tags
RPMTAG_HEADERSIGNATURES = 62
RPMTAG_HEADERIMMUTABLE = 63

# Main header tags
RPMTAG_NAME = 1000
RPMTAG_VERSION = 1001
RPMTAG_RELEASE = 1002
RPMTAG_PAYLOADDIGEST = 5092
RPMTAG_PAYLOADDIGESTALGO = 5093


class HeaderError(Exception):
    """Malformed package lead or header blob."""
    pass


class TagType(IntEnum):
    """Header entry data types."""

    NULL = 0
    CHAR = 1
    INT8 = 2
    INT16 = 3
    INT32 = 4
    INT64 = 5
    STRING = 6
    BIN = 7
    STRING_ARRAY = 8
    I18NSTRING = 9


_INT_FORMATS = {
    TagType.INT16: ("H", 2),
    TagType.INT32: ("I", 4),
    TagType.INT64: ("Q", 8),
}


@dataclass
class Lead:
    """Package lead (legacy fixed-size preamble)."""

    major: int
    minor: int
    type: int
    archnum: int
    name: str
    osnum: int
    signature_type: int


@dataclass
class HeaderBlob:
    """Raw header blob as read from the stream."""

    il: int
    dl: int
    index: bytes
    data: bytes
    region_tag: int | None = None


@dataclass
class HeaderEntry:
    """One decoded header entry."""

    tag: int
    type: TagType
    count: int
    value: Any


@dataclass
class Header:
    """Decoded header; entries keep their storage order."""

    entries: list[HeaderEntry] = field(default_factory=list)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, tag: int) -> bool:
        return self.entry(tag) is not None

    def entry(self, tag: int) -> HeaderEntry | None:
        for e in self.entries:
            if e.tag == tag:
                return e
        return None

    def get(self, tag: int, default: Any = None) -> Any:
        e = self.entry(tag)
        return default if e is None else e.value

    def add(self, tag: int, type_: TagType, value: Any) -> None:
        """Append an entry, replacing any existing entry for ``tag``."""
        self.entries = [e for e in self.entries if e.tag != tag]
        self.entries.append(HeaderEntry(tag, TagType(type_), _count_of(type_, value), value))

    def copy_tags(self, src: Header, tags: list[int]) -> None:
        """Copy the listed tags from ``src``, skipping absent ones."""
        for tag in tags:
            e = src.entry(tag)
            if e is not None and tag not in self:
                self.entries.append(HeaderEntry(e.tag, e.type, e.count, e.value))


def read_lead(stream: DigestStream) -> Lead:
    """Read and validate the package lead."""
    data = stream.read_exact(LEAD_SIZE)
    (magic, major, minor, type_, archnum, name, osnum,
     sigtype, _reserved) = struct.unpack(LEAD_FORMAT, data)
    if magic != LEAD_MAGIC:
        raise HeaderError("not an rpm package (bad lead magic)")
    if major < 3:
        raise HeaderError(f"unsupported package version {major}.{minor}")
    if sigtype != HEADER_SIGNED_TYPE:
        raise HeaderError(f"illegal signature type {sigtype}")
    return Lead(
        major=major,
        minor=minor,
        type=type_,
        archnum=archnum,
        name=name.split(b"\0", 1)[0].decode("utf-8", errors="replace"),
        osnum=osnum,
        signature_type=sigtype,
    )


def pad_length(dl: int) -> int:
    """Padding that follows a signature header data store."""
    return (8 - (dl % 8)) % 8


def read_header_blob(stream: DigestStream, region_tag: int, pad: bool = False,
                     check: bool = True) -> HeaderBlob:
    """Read one header blob and check its structure.

    Args:
        stream: Package stream positioned at the blob
        region_tag: Region tag the blob must carry if it has one
        pad: Also consume the 8-byte alignment padding (signature header)
        check: Sanity check every index entry (the region is always checked)

    Raises:
        HeaderError: On bad magic, excessive sizes or inconsistent index
        StreamError: On short read
    """
    intro = stream.read_exact(INTRO_SIZE)
    if intro[:8] != HEADER_MAGIC:
        raise HeaderError("hdr magic: BAD")
    il, dl = struct.unpack(">II", intro[8:])
    if il < 1 or il > MAX_INDEX_ENTRIES:
        raise HeaderError(f"hdr tags: BAD, no. of tags({il}) out of range")
    if dl > MAX_DATA_SIZE:
        raise HeaderError(f"hdr data: BAD, no. of bytes({dl}) out of range")

    index = stream.read_exact(il * ENTRY_SIZE)
    data = stream.read_exact(dl)
    if pad:
        stream.read_exact(pad_length(dl))

    blob = HeaderBlob(il=il, dl=dl, index=index, data=data)
    if check:
        _verify_index(blob)
    _verify_region(blob, region_tag)
    return blob


def _index_entries(blob: HeaderBlob):
    for i in range(blob.il):
        yield struct.unpack(">IIiI", blob.index[i * ENTRY_SIZE:(i + 1) * ENTRY_SIZE])


def _verify_index(blob: HeaderBlob) -> None:
    for n, (tag, type_, offset, count) in enumerate(_index_entries(blob)):
        if type_ > TagType.I18NSTRING:
            raise HeaderError(f"tag[{n}]: BAD, tag {tag} type {type_}")
        if offset < 0 or offset > blob.dl:
            raise HeaderError(f"tag[{n}]: BAD, tag {tag} offset {offset}")
        if count < 1 and type_ != TagType.NULL:
            raise HeaderError(f"tag[{n}]: BAD, tag {tag} count {count}")


def _verify_region(blob: HeaderBlob, region_tag: int) -> None:
    tag, type_, offset, count = next(_index_entries(blob))
    if tag not in (RPMTAG_HEADERSIGNATURES, RPMTAG_HEADERIMMUTABLE):
        # Legacy header without a region
        return
    if tag != region_tag:
        raise HeaderError(f"region tag: BAD, tag {tag} (expected {region_tag})")
    if type_ != TagType.BIN or count != REGION_TRAILER_SIZE:
        raise HeaderError(f"region tag: BAD, type {type_} count {count}")
    if offset + REGION_TRAILER_SIZE > blob.dl:
        raise HeaderError(f"region offset: BAD, tag {tag} offset {offset}")
    rtag, rtype, roffset, rcount = struct.unpack(
        ">IIiI", blob.data[offset:offset + REGION_TRAILER_SIZE]
    )
    if rtag != region_tag or rtype != TagType.BIN or rcount != REGION_TRAILER_SIZE:
        raise HeaderError("region trailer: BAD")
    if -roffset != blob.il * ENTRY_SIZE:
        raise HeaderError(f"region size: BAD, ril({-roffset // ENTRY_SIZE}) != il({blob.il})")
    blob.region_tag = region_tag


def _decode_strings(data: bytes, offset: int, count: int, tag: int) -> list[str]:
    strings = []
    pos = offset
    for _ in range(count):
        end = data.find(b"\0", pos)
        if end < 0:
            raise HeaderError(f"tag {tag}: unterminated string")
        strings.append(data[pos:end].decode("utf-8", errors="replace"))
        pos = end + 1
    return strings


def _decode_value(data: bytes, tag: int, type_: TagType, offset: int, count: int) -> Any:
    if type_ == TagType.NULL:
        return None
    if type_ in (TagType.CHAR, TagType.INT8):
        if offset + count > len(data):
            raise HeaderError(f"tag {tag}: data overflow")
        return list(data[offset:offset + count])
    if type_ in _INT_FORMATS:
        fmt, size = _INT_FORMATS[type_]
        if offset % size:
            raise HeaderError(f"tag {tag}: misaligned {type_.name} data")
        if offset + count * size > len(data):
            raise HeaderError(f"tag {tag}: data overflow")
        return list(struct.unpack(f">{count}{fmt}", data[offset:offset + count * size]))
    if type_ == TagType.BIN:
        if offset + count > len(data):
            raise HeaderError(f"tag {tag}: data overflow")
        return data[offset:offset + count]
    if type_ == TagType.STRING:
        if count != 1:
            raise HeaderError(f"tag {tag}: string count {count}")
        return _decode_strings(data, offset, 1, tag)[0]
    return _decode_strings(data, offset, count, tag)


def import_blob(blob: HeaderBlob) -> Header:
    """Decode a header blob into a Header (region entries are dropped)."""
    header = Header()
    for tag, type_, offset, count in _index_entries(blob):
        if tag == blob.region_tag:
            continue
        try:
            t = TagType(type_)
        except ValueError:
            raise HeaderError(f"tag {tag}: unknown type {type_}") from None
        value = _decode_value(blob.data, tag, t, offset, count)
        header.entries.append(HeaderEntry(tag, t, count, value))
    return header


def _count_of(type_: TagType, value: Any) -> int:
    if type_ == TagType.NULL:
        return 0
    if type_ == TagType.STRING:
        return 1
    return len(value)


def _encode_value(type_: TagType, value: Any) -> bytes:
    if type_ == TagType.NULL:
        return b""
    if type_ in (TagType.CHAR, TagType.INT8):
        return bytes(value)
    if type_ in _INT_FORMATS:
        fmt, _ = _INT_FORMATS[type_]
        return struct.pack(f">{len(value)}{fmt}", *value)
    if type_ == TagType.BIN:
        return bytes(value)
    if type_ == TagType.STRING:
        return value.encode("utf-8") + b"\0"
    return b"".join(s.encode("utf-8") + b"\0" for s in value)


def encode_header(entries: list[tuple[int, TagType, Any]], region_tag: int | None = None) -> bytes:
    """Encode entries as a header blob, in the given order.

    With ``region_tag`` the blob starts with a region entry whose trailer
    closes the data store, as package writers produce.
    """
    il = len(entries) + (1 if region_tag is not None else 0)
    index = []
    data = bytearray()
    for tag, type_, value in entries:
        type_ = TagType(type_)
        if type_ in _INT_FORMATS:
            align = _INT_FORMATS[type_][1]
            data.extend(b"\0" * ((align - len(data) % align) % align))
        index.append(struct.pack(">IIiI", tag, type_, len(data), _count_of(type_, value)))
        data.extend(_encode_value(type_, value))

    if region_tag is not None:
        trailer_offset = len(data)
        data.extend(struct.pack(">IIiI", region_tag, TagType.BIN, -(il * ENTRY_SIZE),
                                REGION_TRAILER_SIZE))
        index.insert(0, struct.pack(">IIiI", region_tag, TagType.BIN, trailer_offset,
                                    REGION_TRAILER_SIZE))

    return HEADER_MAGIC + struct.pack(">II", il, len(data)) + b"".join(index) + bytes(data)


def encode_lead(name: str) -> bytes:
    """Encode a binary package lead."""
    return struct.pack(
        LEAD_FORMAT,
        LEAD_MAGIC,
        3,
        0,
        0,
        1,
        name.encode("utf-8")[:65],
        1,
        HEADER_SIGNED_TYPE,
        b"",
    )
