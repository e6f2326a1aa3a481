"""Streaming digests bound to a single forward-only package stream.

A package is read exactly once. Every digest a signature header declares
is attached to the stream under its own context id and accumulates the
bytes that pass through the stream while it is active, so digests over
the header, the payload and both together are computed in one pass.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from typing import Any, BinaryIO, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4 * 8192

# OpenPGP hash algorithm ids -> hashlib names
HASH_ALGORITHMS: dict[int, str] = {
    1: "md5",
    2: "sha1",
    3: "ripemd160",
    8: "sha256",
    9: "sha384",
    10: "sha512",
    11: "sha224",
}

HASH_NAMES: dict[int, str] = {
    1: "MD5",
    2: "SHA1",
    3: "RIPEMD160",
    8: "SHA256",
    9: "SHA384",
    10: "SHA512",
    11: "SHA224",
}


class StreamError(Exception):
    """Read failure or premature end of the package stream."""
    pass


class DigestError(Exception):
    """Digest context misuse or unavailable hash algorithm."""
    pass


class Digestible(Protocol):
    """Anything the range tracker can activate: a context id and algorithm."""

    ctx_id: int
    hash_algorithm: int
    range: Any


def new_hash(algorithm: int) -> Any:
    """Create a hashlib object for an OpenPGP hash algorithm id."""
    name = HASH_ALGORITHMS.get(algorithm)
    if name is None:
        raise DigestError(f"Unknown hash algorithm {algorithm}")
    try:
        return hashlib.new(name)
    except ValueError as e:
        raise DigestError(f"Hash algorithm {HASH_NAMES[algorithm]} unavailable: {e}") from e


class DigestStream:
    """Sequential read-only stream feeding a set of digest contexts.

    Contexts are keyed by id. A context sees every byte read after its
    activation until it is finalized.
    """

    def __init__(self, fileobj: BinaryIO, description: str = "<stream>") -> None:
        self._file = fileobj
        self.description = description
        self.bytes_read = 0
        self._contexts: dict[int, Any] = {}

    def __repr__(self) -> str:
        return f"DigestStream({self.description!r}, active={sorted(self._contexts)})"

    @property
    def active_ids(self) -> list[int]:
        """Ids of the contexts currently accumulating."""
        return sorted(self._contexts)

    def is_active(self, ctx_id: int) -> bool:
        return ctx_id in self._contexts

    def activate(self, ctx_id: int, algorithm: int) -> bool:
        """Start accumulating under ``ctx_id`` from the next byte read.

        Returns False without touching the context when ``ctx_id`` is
        already live, so a context spanning several ranges keeps its state.
        """
        if ctx_id in self._contexts:
            return False
        self._contexts[ctx_id] = new_hash(algorithm)
        return True

    def _feed(self, data: bytes) -> None:
        self.bytes_read += len(data)
        for ctx in self._contexts.values():
            ctx.update(data)

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; an empty result means end of stream."""
        try:
            data = self._file.read(size)
        except OSError as e:
            raise StreamError(f"read failed: {e}") from e
        if data:
            self._feed(data)
        return data

    def read_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes or raise StreamError."""
        chunks = []
        remaining = size
        while remaining > 0:
            data = self.read(remaining)
            if not data:
                raise StreamError(
                    f"short read: expected {size} bytes, got {size - remaining}"
                )
            chunks.append(data)
            remaining -= len(data)
        return b"".join(chunks)

    def consume(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
        """Read to end of stream, discarding content.

        Returns the number of bytes consumed.
        """
        total = 0
        while data := self.read(chunk_size):
            total += len(data)
        return total

    def duplicate(self, ctx_id: int) -> Any:
        """Snapshot a live context without disturbing it."""
        try:
            return self._contexts[ctx_id].copy()
        except KeyError:
            raise DigestError(f"No active digest context {ctx_id}") from None

    def finalize(self, ctx_id: int) -> bytes:
        """Finish a context and drop it; it cannot be used afterwards."""
        try:
            ctx = self._contexts.pop(ctx_id)
        except KeyError:
            raise DigestError(f"No active digest context {ctx_id}") from None
        return ctx.digest()

    def finalize_all(self) -> None:
        """Drop every remaining context (abort path)."""
        if self._contexts:
            logger.debug("%s: discarding digest contexts %s", self.description, self.active_ids)
        self._contexts.clear()


def activate_range(stream: DigestStream, items: Iterable[Digestible], range_mask: Any) -> list[int]:
    """Activate contexts for every item whose range intersects ``range_mask``.

    Items whose context is already live are left alone. An algorithm the
    local hashlib lacks is logged and skipped; the verifier later reports
    the item as unsupported.
    """
    activated = []
    for item in items:
        if not item.range & range_mask:
            continue
        try:
            if stream.activate(item.ctx_id, item.hash_algorithm):
                activated.append(item.ctx_id)
        except DigestError as e:
            logger.warning("%s: %s", stream.description, e)
    return activated
