"""
Base classes for merging regenerated files with edited working copies.

Provides the result types and the abstract interface of a three-way merger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class MergeStatus(str, Enum):
    """How a file was reconciled."""

    CREATED = "created"  # Nothing on disk, generator output written
    FAST_FORWARD = "fast-forward"  # Disk was pristine (or already equal), new output taken
    CLEAN = "clean"  # Edits and generator changes merged without overlap
    CONFLICT = "conflict"  # Overlapping changes, markers embedded
    KEPT_OURS = "kept-ours"  # No base to merge against, disk content kept


@dataclass(frozen=True)
class ConflictRegion:
    """One unresolved hunk in a merged file.

    Attributes:
        start_line: 1-indexed line of the `<<<<<<<` marker
        end_line: 1-indexed line of the `>>>>>>>` marker, inclusive (the
            last line of the file for an unterminated region)
        message: Human-readable description
    """

    start_line: int
    end_line: int
    message: str = "Overlapping changes between user edits and generated code"


@dataclass
class MergeResult:
    """Outcome of a three-way merge.

    Attributes:
        content: Bytes to write to the working file
        status: How the content was obtained
        conflicts: Conflict regions inside content, empty unless status is CONFLICT
    """

    content: bytes
    status: MergeStatus
    conflicts: list[ConflictRegion] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return self.status == MergeStatus.CONFLICT


class Merger(ABC):
    """Abstract base class for three-way mergers.

    Implementations never fail on content: the worst outcome is a result
    with status CONFLICT.
    """

    @abstractmethod
    def merge(self, base: bytes | None, ours: bytes | None, theirs: bytes) -> MergeResult:
        """Reconcile the working copy with new generator output.

        Args:
            base: Pristine content of the previous generation, None if unknown
            ours: Content currently on disk, None if the file does not exist
            theirs: Freshly generated content

        Returns:
            MergeResult with the content to write
        """
        pass
