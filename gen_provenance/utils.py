"""
Utility functions shared by the provenance pipeline.
"""

from __future__ import annotations

import os
from pathlib import PurePosixPath

# Bytes inspected when sniffing for binary content
BINARY_SNIFF_SIZE = 8192

# Characters git refuses inside a tree entry name
_INVALID_ENTRY_CHARS = ("\0", "\n")


def is_binary_content(data: bytes, sniff_size: int = BINARY_SNIFF_SIZE) -> bool:
    """Return True if the content looks binary (contains a NUL byte).

    Examples:
        b"hello\\n" -> False
        b"\\x89PNG\\x00\\x00" -> True

    Args:
        data: Raw file content
        sniff_size: Number of leading bytes to inspect

    Returns:
        True if a NUL byte occurs in the inspected prefix
    """
    return b"\0" in data[:sniff_size]


def decode_text(data: bytes) -> str:
    """Decode bytes as UTF-8 without ever failing.

    Undecodable bytes are kept as lone surrogates, so encoding back with
    surrogateescape restores the original bytes exactly.
    """
    return data.decode("utf-8", errors="surrogateescape")


def normalize_line_endings(text: str) -> str:
    """Convert CRLF and lone CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def to_posix_relpath(path: str | os.PathLike[str], root: str | os.PathLike[str] | None = None) -> str:
    """Return a normalized, '/'-separated relative path.

    Examples:
        ("sdk/models/pet.go", None) -> "sdk/models/pet.go"
        ("/repo/sdk/pet.go", "/repo") -> "sdk/pet.go"
        ("./a//b/../c.txt", None) -> "a/c.txt"

    Args:
        path: Path to normalize, absolute when root is given
        root: Optional root the result is made relative to

    Returns:
        Relative POSIX path

    Raises:
        ValueError: If the path escapes the root or is empty
    """
    if root is not None:
        path = os.path.relpath(os.fspath(path), os.fspath(root))
    normalized = os.path.normpath(os.fspath(path)).replace(os.sep, "/")
    if normalized in ("", ".") or normalized.startswith("../") or normalized == ".." or PurePosixPath(normalized).is_absolute():
        raise ValueError(f"Path is not inside the output directory: {path}")
    if any(ch in normalized for ch in _INVALID_ENTRY_CHARS):
        raise ValueError(f"Path contains characters git cannot store: {path!r}")
    return normalized


def is_executable_name(name: str) -> bool:
    """Return True for file names stored with mode 100755 in pristine trees."""
    base = PurePosixPath(name).name
    if PurePosixPath(base).suffix in (".sh", ".bash", ".zsh"):
        return True
    return base in ("gradlew", "mvnw")

