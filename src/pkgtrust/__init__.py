"""pkgtrust - package signature verification and OpenPGP key import.

Verifies the digests and signatures a package carries in its own
signature header while reading the package exactly once, and imports
armored public-key certificates into the keyring used for that
verification.
"""

from __future__ import annotations

__version__ = "0.3.0"

__all__ = ["__version__"]
