"""
Inspection of hand edits against the last pristine snapshot.

Answers "what did the user change since the last generation": which
generated files were moved, deleted or modified, and the unified diff of
one file against its pristine version.
"""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..utils import decode_text, is_binary_content, normalize_line_endings
from .identity.scanner import ScanResult
from .merger.atomic_writer import AtomicWriter
from .sync.healer import Healer

LOG = logging.getLogger(__name__)


@dataclass
class FileChangeSummary:
    """Generated files whose working copy departs from the pristine snapshot.

    Attributes:
        deleted: Pristine paths whose generated-id is no longer on disk
        moved: Pristine path to the path the generated-id was found at
        modified: Paths whose content differs from the pristine version
    """

    deleted: list[str] = field(default_factory=list)
    moved: dict[str, str] = field(default_factory=dict)
    modified: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.deleted or self.moved or self.modified)

    def format_summary(self, max_lines: int = 0) -> str:
        """Format the summary like `git status --short`, truncated to max_lines (0 = all)."""
        lines = [f"  D {path}" for path in self.deleted]
        lines += [f"  R {src} -> {dst}" for src, dst in sorted(self.moved.items())]
        lines += [f"  M {path}" for path in self.modified]
        total = len(lines)
        if 0 < max_lines < total:
            lines = lines[:max_lines]
            lines.append(f"  ... and {total - max_lines} more")
        return "\n".join(lines)


@dataclass
class FileDiff:
    """Unified diff of a working file against its pristine version.

    Attributes:
        path: Working path relative to the output directory
        diff_text: Unified diff, or a parenthesized note when no diff applies
        added: Lines added by the user
        removed: Generated lines removed by the user
    """

    path: str
    diff_text: str
    added: int = 0
    removed: int = 0

    @property
    def has_changes(self) -> bool:
        return self.added + self.removed > 0


def detect_file_changes(healer: Healer, target_id: str, output_dir: Path, scan_result: ScanResult) -> FileChangeSummary:
    """Compare the working tree of a target with its pristine snapshot.

    Args:
        healer: Healer used for store reads
        target_id: Target to inspect
        output_dir: Absolute output directory of the target
        scan_result: Scan of output_dir

    Returns:
        FileChangeSummary, empty when the target has no snapshot
    """
    summary = FileChangeSummary()
    index = healer.read_index(target_id)
    for generated_id, pristine_path in sorted(index.items(), key=lambda item: item[1]):
        current_path = scan_result.uuid_to_path.get(generated_id)
        if current_path is None:
            if not (output_dir / pristine_path).exists():
                summary.deleted.append(pristine_path)
            continue
        if current_path != pristine_path:
            summary.moved[pristine_path] = current_path
            continue
        pristine, _ = healer.read_pristine_at(target_id, pristine_path)
        if (output_dir / current_path).read_bytes() != pristine:
            summary.modified.append(current_path)
    return summary


def unified_diff(pristine: bytes, current: bytes, path: str, context: int = 3) -> FileDiff:
    """Diff pristine content against current content (line endings normalized)."""
    if is_binary_content(pristine) or is_binary_content(current):
        return FileDiff(path, "(binary file)")

    diff_lines = list(
        difflib.unified_diff(
            normalize_line_endings(decode_text(pristine)).splitlines(keepends=True),
            normalize_line_endings(decode_text(current)).splitlines(keepends=True),
            fromfile=f"generated/{path}",
            tofile=f"current/{path}",
            n=context,
        )
    )
    added = sum(1 for line in diff_lines if line.startswith("+") and not line.startswith("+++"))
    removed = sum(1 for line in diff_lines if line.startswith("-") and not line.startswith("---"))
    text = "".join(line if line.endswith("\n") else line + "\n" for line in diff_lines)
    return FileDiff(path, text, added, removed)


def compute_file_diff(healer: Healer, target_id: str, output_dir: Path, path: str, generated_id: str | None = None) -> FileDiff:
    """Diff a working file against its pristine version.

    The pristine version is looked up by generated-id when known, so moved
    files still diff against their origin, and by path otherwise.
    """
    if generated_id is not None:
        pristine, found = healer.read_pristine(target_id, generated_id)
    else:
        pristine, found = healer.read_pristine_at(target_id, path)
    if not found:
        return FileDiff(path, "(no pristine base available)")

    try:
        current = (output_dir / path).read_bytes()
    except FileNotFoundError:
        return FileDiff(path, "(file not found on disk)")
    return unified_diff(pristine, current, path)


def restore_pristine(healer: Healer, target_id: str, output_dir: Path, path: str, generated_id: str | None = None) -> bool:
    """Overwrite a working file with its pristine version, keeping its mode.

    Returns:
        True if a pristine version existed and was written
    """
    if generated_id is not None:
        pristine, found = healer.read_pristine(target_id, generated_id)
    else:
        pristine, found = healer.read_pristine_at(target_id, path)
    if not found:
        return False
    AtomicWriter().write(output_dir / path, pristine)
    LOG.info("Restored %s to its pristine version", output_dir / path)
    return True
