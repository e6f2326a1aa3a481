"""Reading key material from files and URLs."""

from __future__ import annotations

import sys
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse, urlunparse
from urllib.request import Request, urlopen

from pkgtrust import __version__

DEFAULT_TIMEOUT = 30  # seconds
MAX_SOURCE_BYTES = 16 * 1024 * 1024
HKP_PORT = 11371

URL_SCHEMES = ("http", "https", "hkp")


class SourceError(Exception):
    """Source could not be read."""
    pass


def is_url(source: str) -> bool:
    return urlparse(source).scheme in URL_SCHEMES


def _http_url(source: str) -> str:
    """Map hkp:// to the keyserver's plain HTTP port."""
    parsed = urlparse(source)
    if parsed.scheme != "hkp":
        return source
    netloc = parsed.netloc if parsed.port else f"{parsed.netloc}:{HKP_PORT}"
    return urlunparse(parsed._replace(scheme="http", netloc=netloc))


def _fetch(url: str, timeout: int, max_bytes: int) -> bytes:
    req = Request(_http_url(url))
    req.add_header("User-Agent", f"pkgtrust/{__version__}")
    try:
        with urlopen(req, timeout=timeout) as response:
            data = response.read(max_bytes + 1)
    except HTTPError as e:
        raise SourceError(f"HTTP error: {e.code}") from e
    except URLError as e:
        raise SourceError(f"Network error: {e.reason}") from e
    except OSError as e:
        raise SourceError(str(e)) from e
    if len(data) > max_bytes:
        raise SourceError(f"content exceeds size limit ({max_bytes} bytes)")
    return data


def slurp(source: str, timeout: int = DEFAULT_TIMEOUT, max_bytes: int = MAX_SOURCE_BYTES) -> bytes:
    """Read a whole source into memory.

    Args:
        source: Local path, ``-`` for standard input, or http(s)/hkp URL
        timeout: Network timeout in seconds
        max_bytes: Largest accepted source

    Raises:
        SourceError: If the source cannot be read
    """
    if is_url(source):
        return _fetch(source, timeout, max_bytes)
    if source == "-":
        return sys.stdin.buffer.read(max_bytes)
    try:
        path = Path(source)
        if path.stat().st_size > max_bytes:
            raise SourceError(f"file exceeds size limit ({max_bytes} bytes)")
        return path.read_bytes()
    except OSError as e:
        raise SourceError(e.strerror or str(e)) from e
