"""Content hashing and integrity verification helpers."""

from __future__ import annotations

import base64
import hashlib
import re
from typing import Optional

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")
_HEX = re.compile(r"^[0-9a-fA-F]+$")
_SRI_ALGORITHMS = {"sha1": hashlib.sha1, "sha256": hashlib.sha256, "sha384": hashlib.sha384,
                   "sha512": hashlib.sha512}
_HEX_LENGTHS = {40: hashlib.sha1, 64: hashlib.sha256, 96: hashlib.sha384, 128: hashlib.sha512}


def sha256_hex(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of data."""
    return hashlib.sha256(data).hexdigest()


def is_valid_sha256(value: Optional[str]) -> bool:
    """Return True for a 64 character lowercase hex digest."""
    return bool(value) and bool(_SHA256_HEX.match(value))


def sharded_store_path(content_hash: str) -> str:
    """Relative store path for a hash: packages/<aa>/<bb>/<hash>."""
    return f"packages/{content_hash[0:2]}/{content_hash[2:4]}/{content_hash}"


def sri_from_sha256_hex(hex_digest: str) -> str:
    """Convert a hex SHA-256 digest to an SRI string."""
    return "sha256-" + base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


def sri_from_sha1_hex(hex_digest: str) -> str:
    """Convert a hex SHA-1 (npm shasum) to an SRI string."""
    return "sha1-" + base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


def verify_integrity(data: bytes, integrity: Optional[str]) -> bool:
    """Check data against an integrity string.

    Accepts SRI strings (``sha512-<base64>``, possibly several separated by
    whitespace, any one matching is enough) and raw hex digests whose length
    identifies the algorithm. An empty integrity string never verifies.
    """
    if not integrity:
        return False
    for token in integrity.split():
        algo, sep, expected = token.partition("-")
        if sep and algo.lower() in _SRI_ALGORITHMS:
            try:
                expected_raw = base64.b64decode(expected, validate=True)
            except ValueError:
                continue
            if _SRI_ALGORITHMS[algo.lower()](data).digest() == expected_raw:
                return True
            continue
        if _HEX.match(token) and len(token) in _HEX_LENGTHS:
            if _HEX_LENGTHS[len(token)](data).hexdigest() == token.lower():
                return True
    return False
