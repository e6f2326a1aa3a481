"""Streaming package verification.

The package is read once, front to back. Digests over the header are
started before the immutable header is read, digests over the payload
before the payload is read, and digests over both stay live across the
two phases. Items are checked as soon as the bytes they cover have gone
by: header items after the header, then payload items, then items that
cover both.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

from pkgtrust.config import TrustConfig
from pkgtrust.digest import DEFAULT_CHUNK_SIZE, DigestError, DigestStream, StreamError, activate_range
from pkgtrust.header import (
    RPMTAG_HEADERIMMUTABLE,
    RPMTAG_HEADERSIGNATURES,
    RPMTAG_PAYLOADDIGEST,
    RPMTAG_PAYLOADDIGESTALGO,
    Header,
    HeaderError,
    import_blob,
    read_header_blob,
    read_lead,
)
from pkgtrust.keyring import Keyring
from pkgtrust.report import DefaultReporter, Reporter, VerboseReporter
from pkgtrust.sigtags import COMBINED, SignatureItem, SignatureRange, VerifyFlags, iter_items
from pkgtrust.verifier import Outcome, verify_signature

logger = logging.getLogger(__name__)

# Main header tags the signature checks need
COPY_TAGS = [RPMTAG_PAYLOADDIGEST, RPMTAG_PAYLOADDIGESTALGO]


class VerifyState(Enum):
    """Progress of one verification."""

    START = "start"
    LEAD_READ = "lead_read"
    SIGHDR_READ = "sighdr_read"
    HEADER_DIGESTS_ACTIVE = "header_digests_active"
    HEADER_READ = "header_read"
    HEADER_VERIFIED = "header_verified"
    PAYLOAD_DIGESTS_ACTIVE = "payload_digests_active"
    PAYLOAD_READ = "payload_read"
    PAYLOAD_VERIFIED = "payload_verified"
    COMBINED_VERIFIED = "combined_verified"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ItemReport:
    """Outcome of one reported item."""

    item: SignatureItem
    outcome: Outcome
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.item.tag,
            "kind": self.item.kind.value,
            "outcome": self.outcome.name,
            "message": self.message,
        }


@dataclass
class VerifyResult:
    """Result of verifying one package."""

    description: str
    outcome: Outcome = Outcome.FAIL
    state: VerifyState = VerifyState.START
    message: str | None = None
    failures: int = 0
    items: list[ItemReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    def record(self, item: SignatureItem, outcome: Outcome, message: str) -> None:
        self.items.append(ItemReport(item, outcome, message))
        if outcome is not Outcome.OK:
            self.failures += 1
            self.message = f"{self.description}: {message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "description": self.description,
            "outcome": self.outcome.name,
            "state": self.state.value,
            "message": self.message,
            "failures": self.failures,
            "items": [r.to_dict() for r in self.items],
        }


def _digestible(sigh: Header, flags: VerifyFlags) -> list[SignatureItem]:
    return [item for item in iter_items(sigh, flags) if item.error is None]


def _verify_items(
    stream: DigestStream,
    sigh: Header,
    range_: SignatureRange,
    flags: VerifyFlags,
    keyring: Keyring,
    reporter: Reporter,
    result: VerifyResult,
) -> None:
    for item in iter_items(sigh, flags):
        if item.range != range_:
            continue
        if item.error is not None:
            outcome, message = Outcome.FAIL, item.error
        else:
            snapshot = stream.duplicate(item.ctx_id) if stream.is_active(item.ctx_id) else None
            outcome, message = verify_signature(keyring, item, snapshot)
        if stream.is_active(item.ctx_id):
            stream.finalize(item.ctx_id)
        outcome = reporter.report(item, outcome, message)
        result.record(item, outcome, message)


def verify_package(
    stream: DigestStream,
    keyring: Keyring,
    flags: VerifyFlags = VerifyFlags(0),
    reporter: Reporter | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> VerifyResult:
    """Verify every enabled digest and signature of a package.

    Item failures are recorded and evaluation continues; a read or
    format error aborts with a FAIL outcome.

    Args:
        stream: Package stream positioned at the lead
        keyring: Keys trusted for signatures
        flags: Checks to skip
        reporter: Called once per evaluated item (default: DefaultReporter)
        chunk_size: Read size while streaming the payload

    Returns:
        VerifyResult; ``outcome`` is OK only if every reported item was OK
    """
    if reporter is None:
        reporter = DefaultReporter()
    result = VerifyResult(description=stream.description)

    try:
        read_lead(stream)
        result.state = VerifyState.LEAD_READ

        sigh = import_blob(read_header_blob(stream, RPMTAG_HEADERSIGNATURES, pad=True))
        result.state = VerifyState.SIGHDR_READ

        activate_range(stream, _digestible(sigh, flags), SignatureRange.HEADER)
        result.state = VerifyState.HEADER_DIGESTS_ACTIVE

        blob = read_header_blob(stream, RPMTAG_HEADERIMMUTABLE,
                                check=not flags & VerifyFlags.NOHDRCHK)
        result.state = VerifyState.HEADER_READ

        _verify_items(stream, sigh, SignatureRange.HEADER, flags, keyring, reporter, result)
        result.state = VerifyState.HEADER_VERIFIED

        sigh.copy_tags(import_blob(blob), COPY_TAGS)
        activate_range(stream, _digestible(sigh, flags), SignatureRange.PAYLOAD)
        result.state = VerifyState.PAYLOAD_DIGESTS_ACTIVE

        payload_size = stream.consume(chunk_size)
        logger.debug("%s: %d payload bytes", stream.description, payload_size)
        result.state = VerifyState.PAYLOAD_READ

        _verify_items(stream, sigh, SignatureRange.PAYLOAD, flags, keyring, reporter, result)
        result.state = VerifyState.PAYLOAD_VERIFIED

        _verify_items(stream, sigh, COMBINED, flags, keyring, reporter, result)
        result.state = VerifyState.COMBINED_VERIFIED
    except (StreamError, HeaderError, DigestError) as e:
        logger.error("%s: %s", stream.description, e)
        result.state = VerifyState.FAILED
        result.outcome = Outcome.FAIL
        result.message = f"{stream.description}: {e}"
        return result
    finally:
        stream.finalize_all()

    result.state = VerifyState.DONE
    result.outcome = Outcome.OK if result.failures == 0 else Outcome.FAIL
    return result


class PackageVerifier:
    """Verifies package files against a keyring."""

    def __init__(
        self,
        keyring: Keyring,
        config: TrustConfig | None = None,
        flags: VerifyFlags | None = None,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize verifier.

        Args:
            keyring: Keys trusted for signatures
            config: Settings (default: TrustConfig())
            flags: Checks to skip, added to the configured ones
            echo: Output function for results (default: module logger)
        """
        self.keyring = keyring
        self.config = config or TrustConfig()
        self.flags = self.config.flags() | (flags or VerifyFlags(0))
        self.echo = echo or (lambda text: logger.info("%s", text))

    def verify_file(self, fileobj: BinaryIO, description: str, reporter: Reporter | None = None) -> VerifyResult:
        stream = DigestStream(fileobj, description)
        return verify_package(stream, self.keyring, self.flags, reporter, self.config.read_chunk_size)

    def verify_path(self, path: Path, reporter: Reporter | None = None) -> VerifyResult:
        """Open and verify one package file."""
        try:
            with open(path, "rb") as f:
                return self.verify_file(f, str(path), reporter)
        except OSError as e:
            logger.error("%s: open failed: %s", path, e.strerror or e)
            return VerifyResult(
                description=str(path),
                state=VerifyState.FAILED,
                message=f"{path}: open failed: {e.strerror or e}",
            )

    def verify_paths(self, paths: Iterable[Path]) -> int:
        """Verify packages, echoing one result per package.

        Returns:
            Number of packages that failed verification
        """
        failed = 0
        for path in paths:
            if self.config.verbose:
                self.echo(f"{path}:")
                result = self.verify_path(path, VerboseReporter(self.echo))
            else:
                reporter = DefaultReporter(sink=lambda token: None)
                result = self.verify_path(path, reporter)
                status = "OK" if result.ok else "NOT OK"
                parts = [f"{path}:", *reporter.tokens, status]
                self.echo(" ".join(parts))
            if not result.ok:
                failed += 1
        return failed
