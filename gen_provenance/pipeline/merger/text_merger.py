"""
Text merger implementation.

Reconciles a regenerated file with its edited working copy using the
previous pristine output as merge base. The merge itself is done by
`git merge-file`; overlapping changes are written with standard git
conflict markers and located with parse_conflict_markers(), so they can be
resolved in any editor.
"""

from __future__ import annotations

import logging
import tempfile

from ...utils import decode_text, is_binary_content
from ..config import NoBasePolicy
from ..store.git import GitRepository
from .base import ConflictRegion, Merger, MergeResult, MergeStatus
from .markers import BASE_LABEL, END_MARKER, OURS_LABEL, START_MARKER, THEIRS_LABEL, split_lines

LOG = logging.getLogger(__name__)


def parse_conflict_markers(content: str) -> list[ConflictRegion]:
    """Locate conflict regions in text.

    A region starts on a line beginning with `<<<<<<<` and ends on the next
    line beginning with `>>>>>>>`. Malformed input is reported rather than
    skipped: an unterminated region runs to the last line, and a start
    marker inside an open region closes it on the preceding line.

    Args:
        content: Text to scan

    Returns:
        Regions in file order, 1-indexed and inclusive; empty if there are
        no markers
    """
    regions: list[ConflictRegion] = []
    lines = split_lines(content)
    start: int | None = None
    for lineno, line in enumerate(lines, start=1):
        if line.startswith(START_MARKER):
            if start is not None:
                regions.append(ConflictRegion(start, lineno - 1, "Unterminated conflict region"))
            start = lineno
        elif line.startswith(END_MARKER) and start is not None:
            regions.append(ConflictRegion(start, lineno))
            start = None
    if start is not None:
        regions.append(ConflictRegion(start, len(lines), "Unterminated conflict region"))
    return regions


class TextMerger(Merger):
    """Three-way merger for generated source files, backed by git merge-file."""

    def __init__(self, no_base_policy: NoBasePolicy = NoBasePolicy.OURS, repo: GitRepository | None = None):
        """Initialize the merger.

        Args:
            no_base_policy: Reconciliation used when no pristine base exists
                and the file on disk differs from the new output
            repo: Repository whose git runs the merges; merge-file needs no
                repository, so by default git runs in the temp directory
        """
        self.no_base_policy = no_base_policy
        self.repo = repo if repo is not None else GitRepository(tempfile.gettempdir())

    def merge(self, base: bytes | None, ours: bytes | None, theirs: bytes) -> MergeResult:
        """Perform a three-way merge of ours and theirs against base.

        Args:
            base: Pristine content from the previous run; None or empty means unknown
            ours: Current content on disk; None if the file does not exist
            theirs: Freshly generated content

        Returns:
            MergeResult. Statuses:
            - CREATED: no file on disk
            - FAST_FORWARD: disk equals new output, or disk was still pristine
            - CLEAN: changes merged without overlap, or generator changed nothing
            - CONFLICT: overlapping changes, markers embedded
            - KEPT_OURS: no base and the policy keeps the disk content
        """
        if ours is None:
            return MergeResult(content=theirs, status=MergeStatus.CREATED)

        if ours == theirs:
            return MergeResult(content=ours, status=MergeStatus.FAST_FORWARD)

        if not base:
            return self._merge_without_base(ours, theirs)

        if ours == base:
            return MergeResult(content=theirs, status=MergeStatus.FAST_FORWARD)

        if theirs == base:
            return MergeResult(content=ours, status=MergeStatus.CLEAN)

        if is_binary_content(base) or is_binary_content(ours) or is_binary_content(theirs):
            # Binary content cannot carry markers; the edit stays on disk
            return MergeResult(
                content=ours,
                status=MergeStatus.CONFLICT,
                conflicts=[ConflictRegion(1, max(1, ours.count(b"\n")), "Binary file changed by both user and generator")],
            )

        return self._merge_three_way(base, ours, theirs)

    def _merge_three_way(self, base: bytes, ours: bytes, theirs: bytes) -> MergeResult:
        content, conflict_count = self.repo.merge_file(base, ours, theirs, (OURS_LABEL, BASE_LABEL, THEIRS_LABEL))
        if conflict_count == 0:
            return MergeResult(content=content, status=MergeStatus.CLEAN)

        conflicts = parse_conflict_markers(decode_text(content))
        LOG.debug("git merge-file produced %d conflict regions", len(conflicts))
        return MergeResult(content=content, status=MergeStatus.CONFLICT, conflicts=conflicts)

    def _merge_without_base(self, ours: bytes, theirs: bytes) -> MergeResult:
        if self.no_base_policy == NoBasePolicy.THEIRS:
            return MergeResult(content=theirs, status=MergeStatus.CREATED)

        if self.no_base_policy == NoBasePolicy.CONFLICT and not (is_binary_content(ours) or is_binary_content(theirs)):
            return self._merge_three_way(b"", ours, theirs)

        return MergeResult(content=ours, status=MergeStatus.KEPT_OURS)
