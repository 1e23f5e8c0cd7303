"""
Identity scanner.

Walks an output directory and indexes every file that carries a
@generated-id marker, so files can be matched with their pristine history
even after the user moved them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from ...errors import ScanError
from ...utils import BINARY_SNIFF_SIZE, is_binary_content, to_posix_relpath
from .header import extract_generated_id

LOG = logging.getLogger(__name__)

# Directories never holding generated sources
SKIPPED_DIRS = frozenset(
    {
        ".git",
        "node_modules",
        "vendor",
        ".venv",
        "__pycache__",
        "build",
        "dist",
        "target",
        ".gradle",
        ".idea",
    }
)

# Bytes read from each file; the marker must sit in the first lines
_HEAD_READ_SIZE = max(BINARY_SNIFF_SIZE, 64 * 1024)


@dataclass
class ScanResult:
    """Bidirectional index of generated files under one root.

    Attributes:
        root: The scanned directory
        uuid_to_path: Generated-id to relative path. When an id is found at
            several paths the lexicographically first one is kept here and
            all of them are listed in collisions.
        path_to_uuid: Relative path to generated-id
        collisions: Generated-id to every relative path carrying it, for ids
            found more than once
    """

    root: Path
    uuid_to_path: dict[str, str] = field(default_factory=dict)
    path_to_uuid: dict[str, str] = field(default_factory=dict)
    collisions: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class MultiScanResult:
    """Result of scanning several targets in one pass.

    Attributes:
        per_target: Scan result of each target id
        cross_target_collisions: Generated-id to the sorted target ids that
            all contain it
    """

    per_target: dict[str, ScanResult] = field(default_factory=dict)
    cross_target_collisions: dict[str, list[str]] = field(default_factory=dict)


def read_file_head(path: Path) -> bytes:
    """Read the leading bytes of a file that may hold its identity marker."""
    with open(path, "rb") as f:
        return f.read(_HEAD_READ_SIZE)


class Scanner:
    """Scans a directory tree for files with @generated-id markers."""

    def __init__(self, root: str | os.PathLike[str], exclude: list[str | os.PathLike[str]] | None = None):
        """Initialize the scanner.

        Args:
            root: Directory to scan
            exclude: Directories below root whose contents are skipped,
                used when another target owns a nested output directory
        """
        self.root = Path(root)
        self.exclude = {Path(p).resolve() for p in exclude or []}

    def scan(self) -> ScanResult:
        """Walk the tree and index generated files.

        Returns:
            ScanResult for the root

        Raises:
            ScanError: If the root does not exist or cannot be listed
        """
        if not self.root.is_dir():
            raise ScanError(f"Scan root is not a directory: {self.root}")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise ScanError(f"Scan root is not readable: {self.root}")

        found: dict[str, list[str]] = {}
        result = ScanResult(root=self.root)

        def on_error(err: OSError) -> None:
            if Path(err.filename or "") == self.root:
                raise ScanError(f"Cannot read scan root {self.root}: {err}") from err
            LOG.warning("Skipping unreadable directory %s: %s", err.filename, err.strerror)

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames if d not in SKIPPED_DIRS and (current / d).resolve() not in self.exclude
            )
            for name in sorted(filenames):
                file_path = current / name
                if file_path.is_symlink() or not file_path.is_file():
                    continue
                generated_id = self._extract(file_path)
                if generated_id is None:
                    continue
                rel_path = to_posix_relpath(file_path, self.root)
                found.setdefault(generated_id, []).append(rel_path)
                result.path_to_uuid[rel_path] = generated_id

        for generated_id, paths in found.items():
            paths.sort()
            result.uuid_to_path[generated_id] = paths[0]
            if len(paths) > 1:
                result.collisions[generated_id] = paths

        if result.collisions:
            LOG.warning("Found %d generated-id collisions under %s", len(result.collisions), self.root)
        LOG.debug("Scanned %s: %d generated files", self.root, len(result.path_to_uuid))
        return result

    def _extract(self, file_path: Path) -> str | None:
        try:
            head = read_file_head(file_path)
        except OSError as e:
            LOG.warning("Skipping unreadable file %s: %s", file_path, e)
            return None
        if is_binary_content(head):
            return None
        return extract_generated_id(head)


def scan(root: str | os.PathLike[str]) -> ScanResult:
    """Scan a single root. See Scanner.scan()."""
    return Scanner(root).scan()


def scan_targets(roots: Mapping[str, str | os.PathLike[str]]) -> MultiScanResult:
    """Scan several target output directories in one pass.

    Files under a root nested inside another target's root belong to the
    nested (deepest) target only. Any generated-id found in more than one
    target is reported as a cross-target collision.

    Args:
        roots: Target id to output directory

    Returns:
        MultiScanResult with per-target indexes and cross-target collisions

    Raises:
        ScanError: If any root cannot be scanned
    """
    resolved = {target_id: Path(root).resolve() for target_id, root in roots.items()}
    result = MultiScanResult()
    owners: dict[str, set[str]] = {}

    for target_id, root in resolved.items():
        nested = [
            other for other_id, other in resolved.items() if other_id != target_id and other != root and other.is_relative_to(root)
        ]
        scan_result = Scanner(root, exclude=nested).scan()
        result.per_target[target_id] = scan_result
        for generated_id in scan_result.uuid_to_path:
            owners.setdefault(generated_id, set()).add(target_id)

    # Identical roots share files, so only distinct roots can collide
    for generated_id, target_ids in owners.items():
        if len({resolved[t] for t in target_ids}) > 1:
            result.cross_target_collisions[generated_id] = sorted(target_ids)

    if result.cross_target_collisions:
        LOG.warning("Found %d generated-ids shared between targets", len(result.cross_target_collisions))
    return result


__all__ = ["MultiScanResult", "ScanResult", "Scanner", "scan", "scan_targets"]
