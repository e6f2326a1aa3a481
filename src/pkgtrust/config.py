"""
Configuration for package verification and key import.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides

Settings that used to be process-wide toggles (verbose output, packet
dumps) live here and are handed to the components that need them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from pkgtrust.sigtags import VerifyFlags

DEFAULT_KEYSERVER_QUERY = "https://keyserver.ubuntu.com/pks/lookup?op=get&search=0x{keyid}"
DEFAULT_MIN_KEY_BYTES = 64
DEFAULT_READ_CHUNK_SIZE = 4 * 8192
DEFAULT_TIMEOUT = 30  # seconds


class ConfigError(Exception):
    """Invalid configuration value."""
    pass


@dataclass
class TrustConfig:
    """
    Configuration for pkgtrust.

    All values default to safe settings:
    - keyring_dir: None (in-memory keyring)
    - verify_flags: [] (every digest and signature is checked)
    - dump_packets: False
    """

    # Keyring storage
    keyring_dir: Path | None = None

    # Key retrieval; "{keyid}" is replaced by the hex key id
    keyserver_query: str = DEFAULT_KEYSERVER_QUERY
    timeout: int = DEFAULT_TIMEOUT
    min_key_bytes: int = DEFAULT_MIN_KEY_BYTES

    # Output
    verbose: bool = False
    dump_packets: bool = False

    # Verification
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    verify_flags: list[str] = field(default_factory=list)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.min_key_bytes < 0:
            raise ConfigError(f"min_key_bytes must be >= 0, got {self.min_key_bytes}")

        if self.read_chunk_size < 1:
            raise ConfigError(f"read_chunk_size must be >= 1, got {self.read_chunk_size}")

        if self.timeout < 1:
            raise ConfigError(f"timeout must be >= 1, got {self.timeout}")

        # Fail early on misspelt flag names
        self.flags()

    def flags(self) -> VerifyFlags:
        """Return the configured verify flags as a bitmask."""
        result = VerifyFlags(0)
        for name in self.verify_flags:
            try:
                result |= VerifyFlags[name.upper()]
            except KeyError:
                raise ConfigError(f"Unknown verify flag: {name}") from None
        return result

    @classmethod
    def from_env(cls) -> TrustConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            PKGTRUST_KEYRING: Keyring directory
            PKGTRUST_KEYSERVER_QUERY: Keyserver query template
            PKGTRUST_TIMEOUT: Network timeout in seconds
            PKGTRUST_VERBOSE: Verbose reporting (true/false)
            PKGTRUST_DUMP_PACKETS: Describe parsed OpenPGP packets (true/false)
            PKGTRUST_VERIFY_FLAGS: Comma separated verify flag names
        """
        keyring = os.getenv("PKGTRUST_KEYRING")
        flags = os.getenv("PKGTRUST_VERIFY_FLAGS", "")

        return cls(
            keyring_dir=Path(keyring) if keyring else None,
            keyserver_query=os.getenv("PKGTRUST_KEYSERVER_QUERY", DEFAULT_KEYSERVER_QUERY),
            timeout=int(os.getenv("PKGTRUST_TIMEOUT", str(DEFAULT_TIMEOUT))),
            verbose=os.getenv("PKGTRUST_VERBOSE", "false").lower() == "true",
            dump_packets=os.getenv("PKGTRUST_DUMP_PACKETS", "false").lower() == "true",
            verify_flags=[f.strip() for f in flags.split(",") if f.strip()],
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrustConfig:
        """Create configuration from dictionary (e.g., YAML)."""
        keyring = data.get("keyring_dir")
        return cls(
            keyring_dir=Path(keyring) if keyring else None,
            keyserver_query=data.get("keyserver_query", DEFAULT_KEYSERVER_QUERY),
            timeout=data.get("timeout", DEFAULT_TIMEOUT),
            min_key_bytes=data.get("min_key_bytes", DEFAULT_MIN_KEY_BYTES),
            verbose=data.get("verbose", False),
            dump_packets=data.get("dump_packets", False),
            read_chunk_size=data.get("read_chunk_size", DEFAULT_READ_CHUNK_SIZE),
            verify_flags=list(data.get("verify_flags", [])),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> TrustConfig:
        """Load configuration from a YAML file."""
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "keyring_dir": str(self.keyring_dir) if self.keyring_dir else None,
            "keyserver_query": self.keyserver_query,
            "timeout": self.timeout,
            "min_key_bytes": self.min_key_bytes,
            "verbose": self.verbose,
            "dump_packets": self.dump_packets,
            "read_chunk_size": self.read_chunk_size,
            "verify_flags": list(self.verify_flags),
        }
