"""Content digests for installed files.

Digests are rendered as ``sha256:<hex>`` so the algorithm travels with the
value inside the manifest.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

DIGEST_PREFIX = "sha256:"
_CHUNK_SIZE = 8192


def hash_file(file_path: Path) -> str:
    """Compute the digest of a file's bytes.

    Args:
        file_path: File to hash.

    Returns:
        ``sha256:`` followed by 64 lowercase hex characters.

    Raises:
        FileNotFoundError: If the file does not exist.
        PermissionError: If the file cannot be read.
        OSError: On other I/O errors.
    """
    hasher = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            while chunk := f.read(_CHUNK_SIZE):
                hasher.update(chunk)
    except FileNotFoundError as e:
        raise FileNotFoundError(e.errno, f"File not found: {file_path}", str(file_path)) from e
    except PermissionError as e:
        raise PermissionError(e.errno, f"Permission denied reading file: {file_path}", str(file_path)) from e

    return DIGEST_PREFIX + hasher.hexdigest()


def digest_matches(file_path: Path, expected: str | None) -> bool:
    """True when *file_path* hashes to *expected*.

    Records written without a digest always match.
    """
    if not expected:
        return True
    return hash_file(file_path) == expected
