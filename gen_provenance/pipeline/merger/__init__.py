"""
Merger module.

Provides three-way merging (through git merge-file) of regenerated files with their
edited working copies, conflict marker parsing, and atomic writes.
"""

from __future__ import annotations

from .atomic_writer import AtomicWriter
from .base import ConflictRegion, Merger, MergeResult, MergeStatus
from .markers import END_MARKER, OURS_LABEL, SEPARATOR_MARKER, START_MARKER, THEIRS_LABEL
from .text_merger import TextMerger, parse_conflict_markers

__all__ = [
    "AtomicWriter",
    "ConflictRegion",
    "END_MARKER",
    "MergeResult",
    "MergeStatus",
    "Merger",
    "OURS_LABEL",
    "SEPARATOR_MARKER",
    "START_MARKER",
    "THEIRS_LABEL",
    "TextMerger",
    "parse_conflict_markers",
]
