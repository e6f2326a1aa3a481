"""Reporting policies invoked once per verified item.

A reporter receives the item, its outcome and the verifier's message and
returns the outcome to aggregate. The built-in reporters only observe and
hand back the outcome they were given.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from pkgtrust.sigtags import SignatureKind, SignatureItem
from pkgtrust.verifier import Outcome

logger = logging.getLogger(__name__)

Sink = Callable[[str], None]

# Short names used on the one-line summary
TOKENS: dict[SignatureKind, str] = {
    SignatureKind.SIZE: "size",
    SignatureKind.LONGSIZE: "size",
    SignatureKind.SHA1: "sha1",
    SignatureKind.SHA256: "sha256",
    SignatureKind.MD5: "md5",
    SignatureKind.RSA: "rsa",
    SignatureKind.PGP: "pgp",
    SignatureKind.PGP5: "pgp",
    SignatureKind.DSA: "dsa",
    SignatureKind.GPG: "gpg",
    SignatureKind.PAYLOAD: "payload",
}

UNKNOWN_TOKEN = "???"
UNKNOWN_TOKEN_FAILED = "?UnknownSignatureType?"


class Reporter(Protocol):
    """Receives every evaluated item; the returned outcome is authoritative."""

    def report(self, item: SignatureItem, outcome: Outcome, message: str) -> Outcome:
        ...


def token_for(item: SignatureItem, outcome: Outcome) -> str:
    """Summary token: lowercase on success, uppercase otherwise, NOKEY in parentheses."""
    failed = not outcome.ok
    name = TOKENS.get(item.kind)
    if name is None:
        token = UNKNOWN_TOKEN_FAILED if failed else UNKNOWN_TOKEN
    else:
        token = name.upper() if failed else name
    if outcome is Outcome.NOKEY:
        return f"({token})"
    return token


def _log_sink(text: str) -> None:
    logger.info("%s", text)


class DefaultReporter:
    """Terse policy: one token per item."""

    def __init__(self, sink: Sink | None = None) -> None:
        self.sink = sink or _log_sink
        self.tokens: list[str] = []

    def report(self, item: SignatureItem, outcome: Outcome, message: str) -> Outcome:
        token = token_for(item, outcome)
        self.tokens.append(token)
        self.sink(token)
        return outcome


class VerboseReporter:
    """Verbose policy: the full message of each item, indented."""

    def __init__(self, sink: Sink | None = None) -> None:
        self.sink = sink or _log_sink
        self.messages: list[str] = []

    def report(self, item: SignatureItem, outcome: Outcome, message: str) -> Outcome:
        self.messages.append(message)
        self.sink(f"    {message}")
        return outcome


@dataclass
class RecordingReporter:
    """Keeps every call; optionally replaces outcomes through ``override``."""

    calls: list[tuple[SignatureItem, Outcome, str]] = field(default_factory=list)
    override: Callable[[SignatureItem, Outcome], Outcome] | None = None

    def report(self, item: SignatureItem, outcome: Outcome, message: str) -> Outcome:
        self.calls.append((item, outcome, message))
        if self.override is not None:
            return self.override(item, outcome)
        return outcome

    @property
    def tags(self) -> list[int]:
        return [item.tag for item, _, _ in self.calls]
