"""
Generation engine.

Runs the generator for each target and reconciles its output with the
working tree:

1. Scan the output directories for generated-id markers
2. Make the target's provenance ref available (healer)
3. Merge every generated file with its working copy, using the previous
   pristine version as base
4. Write the merged files atomically
5. Record the fresh output as the next pristine snapshot
6. Publish the provenance ref

Targets run concurrently, one worker each. A failure aborts only the
target it belongs to and is reported in its TargetResult.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..errors import (
    ConfigError,
    ConflictsDetectedError,
    GenerationError,
    GenProvenanceError,
    IdentityCollisionError,
    ScanError,
)
from ..utils import is_executable_name, to_posix_relpath
from .config import ConflictPolicy, ProvenanceConfig, TargetConfig
from .generator import Generator
from .identity.header import embed_generated_id, extract_generated_id, new_generated_id
from .identity.scanner import Scanner, ScanResult, scan_targets
from .merger.atomic_writer import AtomicWriter
from .merger.base import ConflictRegion, MergeStatus
from .merger.text_merger import TextMerger
from .store.git import GitRepository, Identity
from .store.provenance import ProvenanceStore
from .sync.healer import Healer, RefAvailability

LOG = logging.getLogger(__name__)


class FileStatus(str, Enum):
    """Outcomes of files that do not go through the three-way merge."""

    OVERWRITTEN = "overwritten"  # Untracked file replaced by generator output
    REMOVED = "removed"  # No longer generated and unedited, deleted from disk
    ORPHANED = "orphaned"  # No longer generated but edited, left on disk


@dataclass
class FileOutcome:
    """What happened to one file during a run.

    Attributes:
        path: Working path relative to the target output directory
        generated_id: The file's generated-id, None for untracked files
        status: A MergeStatus or FileStatus
        conflicts: Conflict regions written into the file
        generated_path: Path the generator emitted, when the file was moved
    """

    path: str
    generated_id: str | None
    status: MergeStatus | FileStatus
    conflicts: list[ConflictRegion] = field(default_factory=list)
    generated_path: str | None = None


@dataclass
class TargetResult:
    """Outcome of one target."""

    target_id: str
    availability: RefAvailability | None = None
    commit: str | None = None
    published: bool = False
    files: list[FileOutcome] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def conflicted_files(self) -> list[FileOutcome]:
        return [f for f in self.files if f.status == MergeStatus.CONFLICT]

    def count(self, status: MergeStatus | FileStatus) -> int:
        return sum(1 for f in self.files if f.status == status)


@dataclass
class RunResult:
    """Outcome of a whole run, keyed by target id."""

    targets: dict[str, TargetResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(t.ok for t in self.targets.values())

    @property
    def failed(self) -> list[TargetResult]:
        return [t for t in self.targets.values() if not t.ok]


class GenerationEngine:
    """Orchestrates scanning, merging and provenance recording for targets."""

    def __init__(self, config: ProvenanceConfig, generator: Generator, repo: GitRepository | None = None, invocation: str | None = None):
        """Initialize the engine.

        Args:
            config: Repository and target configuration
            generator: Producer of fresh output for each target
            repo: Repository handle; discovered from config.repo_root when omitted
            invocation: Command line recorded in provenance commit messages

        Raises:
            GitError: If config.repo_root is not inside a git repository
        """
        self.config = config
        self.generator = generator
        self.repo = repo or GitRepository.discover(config.repo_root, timeout=config.git_timeout)
        self.store = ProvenanceStore(self.repo, Identity(config.author_name, config.author_email))
        self.healer = Healer(
            self.repo,
            self.store,
            remote=config.remote.name,
            fetch_enabled=config.remote.fetch,
            publish_enabled=config.remote.publish,
            fetch_timeout=config.remote.fetch_timeout,
            push_timeout=config.remote.push_timeout,
        )
        self.merger = TextMerger(config.no_base_policy, self.repo)
        self.writer = AtomicWriter()
        self.invocation = invocation
        self._index_lock = threading.Lock()

    def run(self, target_ids: list[str] | None = None, cancel: threading.Event | None = None) -> RunResult:
        """Generate the selected targets (all by default) concurrently.

        Every configured target is scanned, so generated-ids shared between
        a selected target and any other target are detected.

        Raises:
            ConfigError: If a selected target id is not configured
        """
        targets = [self.config.target(t) for t in target_ids] if target_ids else list(self.config.targets)

        scans, cross = self._scan_all()
        result = RunResult()
        if not targets:
            return result

        workers = min(self.config.max_workers, len(targets))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gen-target") as pool:
            futures = {
                target.id: pool.submit(self._run_target_safely, target, scans.get(target.id), cross, cancel)
                for target in targets
            }
            for target_id, future in futures.items():
                result.targets[target_id] = future.result()

        for target_result in result.targets.values():
            self._log_summary(target_result)
        return result

    def run_target(
        self,
        target: TargetConfig,
        scan_result: ScanResult | None = None,
        cross_target_collisions: dict[str, list[str]] | None = None,
        cancel: threading.Event | None = None,
    ) -> TargetResult:
        """Generate one target and reconcile it with the working tree.

        With the FAIL conflict policy, remaining conflicts set result.error to
        a ConflictsDetectedError after the snapshot is recorded.

        Args:
            target: Target to generate
            scan_result: Scan of the target's output directory; scanned here when omitted
            cross_target_collisions: Generated-ids shared with other targets
            cancel: Set to abandon network operations

        Returns:
            TargetResult with per-file outcomes

        Raises:
            ConfigError: If conflicts are staged in the index but the target writes outside the repository
            IdentityCollisionError: If a generated-id identifies more than one file
            ProvenanceStoreError: If the provenance store cannot be read or written
        """
        result = TargetResult(target.id)
        output_dir = self.config.output_path(target)
        if cancel is not None and cancel.is_set():
            raise GenProvenanceError(f"Generation of {target.id} cancelled")
        if self.config.mark_conflicts_in_index and not output_dir.is_relative_to(self.repo.root.resolve()):
            raise ConfigError(f"Target {target.id} writes outside the repository, its conflicts cannot be staged: {output_dir}")

        if scan_result is None:
            scan_result = self._scan_one(target)
        self._check_collisions(target, scan_result, cross_target_collisions or {})

        result.availability = self.healer.ensure_ref_available(target.id, cancel)
        pristine_index = self.healer.read_index(target.id, cancel) if result.availability.available else {}
        pristine_ids = {path: generated_id for generated_id, path in pristine_index.items()}

        try:
            generated = self.generator.generate(target)
        except GenProvenanceError:
            raise
        except Exception as e:
            raise GenerationError(f"Generator failed for target {target.id}: {e}") from e

        snapshot = self._assign_ids(target, generated, pristine_ids, scan_result)

        # Generated-id to the path the generator emitted
        emitted: dict[str, str] = {}
        for path, content in snapshot.items():
            generated_id = extract_generated_id(content)
            if generated_id is None:
                continue
            if generated_id in emitted:
                raise IdentityCollisionError(
                    f"Target {target.id} generated {generated_id} for both {emitted[generated_id]} and {path}",
                    {generated_id: sorted([emitted[generated_id], path])},
                )
            emitted[generated_id] = path

        for path in sorted(snapshot):
            outcome = self._reconcile(target, output_dir, path, snapshot[path], scan_result, result.availability.available, cancel)
            result.files.append(outcome)

        for generated_id, pristine_path in sorted(pristine_index.items(), key=lambda item: item[1]):
            if generated_id not in emitted:
                outcome = self._retire(target, output_dir, generated_id, pristine_path, scan_result, cancel)
                if outcome is not None:
                    result.files.append(outcome)

        result.commit = self.store.commit_pristine(target.id, snapshot, self._commit_message(target, result, len(snapshot)))
        if result.commit is not None:
            result.published = self.healer.publish_ref(target.id, cancel)

        conflicted = [f.path for f in result.conflicted_files]
        if conflicted and self.config.conflict_policy == ConflictPolicy.FAIL:
            result.error = ConflictsDetectedError(f"Target {target.id} has {len(conflicted)} files with conflicts", conflicted)
        return result

    def _run_target_safely(
        self,
        target: TargetConfig,
        scan_result: ScanResult | None,
        cross: dict[str, list[str]],
        cancel: threading.Event | None,
    ) -> TargetResult:
        try:
            return self.run_target(target, scan_result, cross, cancel)
        except (GenProvenanceError, OSError) as e:
            LOG.error("Target %s failed: %s", target.id, e)
            return TargetResult(target.id, error=e)

    def _scan_all(self) -> tuple[dict[str, ScanResult], dict[str, list[str]]]:
        roots = {t.id: self.config.output_path(t) for t in self.config.targets}
        existing = {target_id: root for target_id, root in roots.items() if root.is_dir()}
        try:
            multi = scan_targets(existing)
        except ScanError as e:
            # Unreadable roots get no scan, so their targets rescan and fail on their own
            LOG.warning("Multi-target scan failed, retrying with readable roots only: %s", e)
            existing = {target_id: root for target_id, root in existing.items() if _scannable(root)}
            try:
                multi = scan_targets(existing)
            except ScanError as retry_error:
                LOG.warning("Multi-target scan failed again, scanning targets one by one: %s", retry_error)
                return {}, {}
        scans = dict(multi.per_target)
        for target_id, root in roots.items():
            if not root.is_dir():
                scans[target_id] = ScanResult(root=root)
        return scans, multi.cross_target_collisions

    def _scan_one(self, target: TargetConfig) -> ScanResult:
        root = self.config.output_path(target)
        if not root.is_dir():
            return ScanResult(root=root)
        nested = [
            self.config.output_path(other)
            for other in self.config.targets
            if other.id != target.id and self.config.output_path(other).is_relative_to(root) and self.config.output_path(other) != root
        ]
        return Scanner(root, exclude=nested).scan()

    def _check_collisions(self, target: TargetConfig, scan_result: ScanResult, cross: dict[str, list[str]]) -> None:
        if scan_result.collisions:
            raise IdentityCollisionError(
                f"Target {target.id}: {len(scan_result.collisions)} generated-ids appear in more than one file",
                scan_result.collisions,
            )
        shared = {generated_id: ids for generated_id, ids in cross.items() if target.id in ids}
        if shared:
            raise IdentityCollisionError(
                f"Target {target.id} shares {len(shared)} generated-ids with other targets",
                shared,
            )

    def _assign_ids(
        self,
        target: TargetConfig,
        generated: dict[str, bytes],
        pristine_ids: dict[str, str],
        scan_result: ScanResult,
    ) -> dict[str, bytes]:
        """Normalize paths and give every file without a marker a stable id.

        An id is reused from the previous snapshot or the working file at the
        same path; otherwise a fresh one is minted.
        """
        snapshot: dict[str, bytes] = {}
        used = {extract_generated_id(content) for content in generated.values()}
        for raw_path, content in sorted(generated.items()):
            try:
                path = to_posix_relpath(raw_path)
            except ValueError as e:
                raise GenerationError(f"Target {target.id} generated an invalid path: {e}") from e
            if path in snapshot:
                raise GenerationError(f"Target {target.id} generated {path} twice")
            if self.config.embed_ids and extract_generated_id(content) is None:
                generated_id = next(
                    (
                        candidate
                        for candidate in (pristine_ids.get(path), scan_result.path_to_uuid.get(path))
                        if candidate is not None and candidate not in used
                    ),
                    None,
                ) or new_generated_id()
                used.add(generated_id)
                content = embed_generated_id(path, content, generated_id)
            snapshot[path] = content
        return snapshot

    def _reconcile(
        self,
        target: TargetConfig,
        output_dir: Path,
        path: str,
        theirs: bytes,
        scan_result: ScanResult,
        has_snapshot: bool,
        cancel: threading.Event | None,
    ) -> FileOutcome:
        generated_id = extract_generated_id(theirs)
        if generated_id is None:
            return self._overwrite_untracked(target, output_dir, path, theirs, has_snapshot, cancel)

        # Follow the file if the user moved it
        working_path = scan_result.uuid_to_path.get(generated_id, path)
        file_path = output_dir / working_path
        ours = _read_optional(file_path)

        base: bytes | None = None
        if has_snapshot:
            pristine, found = self.healer.read_pristine(target.id, generated_id, cancel)
            if found:
                base = pristine

        merged = self.merger.merge(base, ours, theirs)
        if merged.content != ours:
            self.writer.write(file_path, merged.content, executable=is_executable_name(working_path) if ours is None else None)

        if merged.status == MergeStatus.KEPT_OURS:
            LOG.warning("%s/%s: no pristine base, kept the file on disk; generator changes were not applied", target.id, working_path)
        elif merged.status == MergeStatus.CONFLICT:
            LOG.warning("%s/%s: %d conflict regions", target.id, working_path, len(merged.conflicts))
            if self.config.mark_conflicts_in_index and ours is not None:
                self._mark_conflicted(file_path, base, ours, theirs)

        return FileOutcome(
            path=working_path,
            generated_id=generated_id,
            status=merged.status,
            conflicts=merged.conflicts,
            generated_path=path if working_path != path else None,
        )

    def _overwrite_untracked(
        self,
        target: TargetConfig,
        output_dir: Path,
        path: str,
        theirs: bytes,
        has_snapshot: bool,
        cancel: threading.Event | None,
    ) -> FileOutcome:
        """Write a file that carries no generated-id; it is not merged."""
        file_path = output_dir / path
        ours = _read_optional(file_path)
        if ours is None:
            self.writer.write(file_path, theirs, executable=is_executable_name(path))
            return FileOutcome(path, None, MergeStatus.CREATED)
        if ours == theirs:
            return FileOutcome(path, None, MergeStatus.FAST_FORWARD)

        if has_snapshot:
            pristine, found = self.healer.read_pristine_at(target.id, path, cancel)
            if found and pristine != ours:
                LOG.warning("%s/%s: untracked file was edited, overwriting with generator output", target.id, path)
        self.writer.write(file_path, theirs)
        return FileOutcome(path, None, FileStatus.OVERWRITTEN)

    def _retire(
        self,
        target: TargetConfig,
        output_dir: Path,
        generated_id: str,
        pristine_path: str,
        scan_result: ScanResult,
        cancel: threading.Event | None,
    ) -> FileOutcome | None:
        """Handle a file the generator no longer emits."""
        working_path = scan_result.uuid_to_path.get(generated_id)
        if working_path is None:
            return None
        file_path = output_dir / working_path
        ours = _read_optional(file_path)
        if ours is None:
            return None
        pristine, found = self.healer.read_pristine(target.id, generated_id, cancel)
        if found and ours == pristine:
            self.writer.remove(file_path)
            LOG.info("%s/%s: no longer generated, removed", target.id, working_path)
            return FileOutcome(working_path, generated_id, FileStatus.REMOVED, generated_path=pristine_path)
        LOG.warning("%s/%s: no longer generated but edited, left in place", target.id, working_path)
        return FileOutcome(working_path, generated_id, FileStatus.ORPHANED, generated_path=pristine_path)

    def _mark_conflicted(self, file_path: Path, base: bytes | None, ours: bytes, theirs: bytes) -> None:
        try:
            repo_path = to_posix_relpath(file_path.resolve(), self.repo.root.resolve())
        except ValueError as e:
            raise ConfigError(f"Cannot stage conflict outside the repository: {file_path}") from e
        with self._index_lock:
            self.repo.set_conflict_state(repo_path, base, ours, theirs, executable=is_executable_name(repo_path))

    def _commit_message(self, target: TargetConfig, result: TargetResult, file_count: int) -> str:
        lines = [f"Generate {target.id}", "", f"files: {file_count}"]
        conflicted = len(result.conflicted_files)
        if conflicted:
            lines.append(f"conflicts: {conflicted}")
        if self.invocation:
            lines.append(f"command: {self.invocation}")
        return "\n".join(lines) + "\n"

    def _log_summary(self, result: TargetResult) -> None:
        if not result.ok and not result.files:
            return
        LOG.info(
            "%s: %d files (%d created, %d merged, %d conflicts, %d kept), ref %s%s",
            result.target_id,
            len(result.files),
            result.count(MergeStatus.CREATED),
            result.count(MergeStatus.CLEAN),
            result.count(MergeStatus.CONFLICT),
            result.count(MergeStatus.KEPT_OURS),
            result.commit[:12] if result.commit else "<none>",
            " (published)" if result.published else "",
        )


def _read_optional(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _scannable(root: Path) -> bool:
    try:
        Scanner(root).scan()
    except ScanError:
        return False
    return True
