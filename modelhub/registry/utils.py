"""
Registry utilities: hashing, semantic version comparison, paths.

Example:
    >>> from modelhub.registry.utils import compare_versions
    >>> compare_versions("1.2.0", "1.10.0")
    -1
"""

from typing import Tuple, Union
from pathlib import Path
import hashlib
import re
import logging

logger = logging.getLogger(__name__)

SHA256_PATTERN = re.compile(r'^[0-9a-fA-F]{64}$')


# ============================================================================
# Hash Computation
# ============================================================================

def _hasher(algorithm: str):
    if algorithm == 'md5':
        return hashlib.md5()
    elif algorithm == 'sha1':
        return hashlib.sha1()
    elif algorithm == 'sha256':
        return hashlib.sha256()
    raise ValueError(f"Unknown algorithm: {algorithm}")


def compute_bytes_hash(data: bytes, algorithm: str = 'sha256') -> str:
    """
    Compute hash of an in-memory byte string.

    Args:
        data: Bytes to hash
        algorithm: Hash algorithm ('md5', 'sha1', 'sha256')

    Returns:
        Hex digest string
    """
    hasher = _hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def is_sha256_digest(checksum: str) -> bool:
    """True when ``checksum`` looks like a hex SHA-256 digest."""
    return bool(checksum) and bool(SHA256_PATTERN.match(checksum))


# ============================================================================
# Version Management
# ============================================================================

def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parse a semantic version into a tuple of ints.

    Non-numeric suffixes (``1.2.0-rc1``) are dropped per component; missing
    components count as 0.
    """
    parts = []
    for piece in version.lstrip('vV').split('.'):
        match = re.match(r'\d+', piece)
        parts.append(int(match.group()) if match else 0)
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if equal, 1 if v1 > v2
    """
    p1, p2 = parse_version(v1), parse_version(v2)
    if p1 < p2:
        return -1
    elif p1 > p2:
        return 1
    return 0


# ============================================================================
# Path Helpers
# ============================================================================

def ensure_directory(dir_path: Union[str, Path]) -> Path:
    """Ensure directory exists, creating parents if needed."""
    path = Path(dir_path)
    path.mkdir(parents=True, exist_ok=True)
    return path
