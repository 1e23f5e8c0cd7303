"""
Provenance store.

Each generation target owns one private ref, refs/speakeasy/gen/<target>,
whose history is a linear chain of commits. The tree of every commit is the
exact, unedited output of one generation run. Because the chain only ever
fast-forwards under a single ref, every historical snapshot stays reachable
and survives `git gc --prune=now`; identical files across runs share one
blob through git's content addressing.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping

from ...errors import GitError, PristineObjectMissingError, ProvenanceStoreError
from ...utils import is_binary_content, is_executable_name, to_posix_relpath
from ..identity.header import extract_generated_id
from .git import MODE_EXECUTABLE, MODE_FILE, MODE_TREE, GitRepository, Identity, TreeEntry, TreeFile

LOG = logging.getLogger(__name__)

REF_PREFIX = "refs/speakeasy/gen/"

DEFAULT_IDENTITY = Identity(name="gen-provenance", email="gen-provenance@localhost")


class ProvenanceStore:
    """Reads and appends pristine snapshots kept under refs/speakeasy/gen/."""

    def __init__(self, repo: GitRepository, identity: Identity = DEFAULT_IDENTITY):
        self.repo = repo
        self.identity = identity
        # Snapshots are immutable, so caches are keyed by commit id
        self._tree_cache: dict[str, dict[str, TreeFile]] = {}
        self._index_cache: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def ref_name(self, target_id: str) -> str:
        """Return the provenance ref of a target.

        Raises:
            ProvenanceStoreError: If the target id cannot be used in a ref name
        """
        ref = f"{REF_PREFIX}{target_id}"
        if not target_id or "/" in target_id or not self.repo.check_ref_format(ref):
            raise ProvenanceStoreError(f"Invalid target id for a provenance ref: {target_id!r}")
        return ref

    def tip(self, target_id: str) -> str | None:
        """Return the current commit of a target's ref, or None if absent locally."""
        try:
            return self.repo.resolve_commit(self.ref_name(target_id))
        except GitError as e:
            raise ProvenanceStoreError(f"Cannot resolve provenance ref for {target_id}: {e}") from e

    def list_refs(self) -> dict[str, str]:
        """Return every provenance ref name with the commit it points to."""
        try:
            return self.repo.list_refs(REF_PREFIX)
        except GitError as e:
            raise ProvenanceStoreError(f"Cannot list provenance refs: {e}") from e

    def snapshot_files(self, target_id: str) -> dict[str, TreeFile]:
        """Return path to tree entry for the tip snapshot of a target.

        Empty when the target has no local ref.
        """
        tip = self.tip(target_id)
        if tip is None:
            return {}
        return self._files_at(tip)

    def pristine_index(self, target_id: str) -> dict[str, str]:
        """Return generated-id to path for the tip snapshot of a target.

        Raises:
            PristineObjectMissingError: If a snapshot blob is not available locally
            ProvenanceStoreError: If the snapshot cannot be read
        """
        tip = self.tip(target_id)
        if tip is None:
            return {}
        with self._lock:
            cached = self._index_cache.get(tip)
        if cached is not None:
            return dict(cached)

        files = self._files_at(tip)
        blobs = self._read_blobs([f.sha for f in files.values()], target_id)
        index: dict[str, str] = {}
        for path in sorted(files):
            content = blobs[files[path].sha]
            if is_binary_content(content):
                continue
            generated_id = extract_generated_id(content)
            if generated_id is not None:
                index.setdefault(generated_id, path)

        with self._lock:
            self._index_cache[tip] = index
        return dict(index)

    def get_pristine(self, target_id: str, generated_id: str) -> tuple[bytes, bool]:
        """Return the pristine content last generated for a file identity.

        Args:
            target_id: Target owning the file
            generated_id: The file's generated-id

        Returns:
            (content, found). found is False when the target has no local
            ref or the id is absent from its tip snapshot.

        Raises:
            PristineObjectMissingError: If the blob is referenced but missing locally
            ProvenanceStoreError: If the store cannot be read
        """
        path = self.pristine_index(target_id).get(generated_id)
        if path is None:
            return b"", False
        return self.get_pristine_at(target_id, path)

    def get_pristine_at(self, target_id: str, path: str) -> tuple[bytes, bool]:
        """Return the pristine content recorded at a path of the tip snapshot."""
        entry = self.snapshot_files(target_id).get(path)
        if entry is None:
            return b"", False
        return self._read_blobs([entry.sha], target_id)[entry.sha], True

    def commit_pristine(self, target_id: str, files: Mapping[str, bytes], message: str | None = None) -> str | None:
        """Record a generation run as a new commit on the target's ref.

        The new commit's parent is the current tip, and the ref is moved
        with a compare-and-swap update, so a concurrent writer makes this
        call fail instead of silently dropping history.

        Args:
            target_id: Target that produced the files
            files: Relative path to pristine content for the whole run
            message: Commit message

        Returns:
            The new commit id, or the unchanged tip when files is empty

        Raises:
            ProvenanceStoreError: If objects cannot be written or the ref moved concurrently
        """
        ref = self.ref_name(target_id)
        parent = self.tip(target_id)
        if not files:
            LOG.warning("Target %s produced no files; provenance ref left at %s", target_id, parent or "<none>")
            return parent

        try:
            blob_ids = {to_posix_relpath(path): self.repo.write_blob(content) for path, content in files.items()}
            tree = self._write_tree(blob_ids)
            commit = self.repo.commit_tree(
                tree,
                parent,
                message or f"Generate {target_id}\n\nfiles: {len(blob_ids)}\n",
                self.identity,
            )
        except (GitError, ValueError) as e:
            raise ProvenanceStoreError(f"Cannot write pristine snapshot for {target_id}: {e}") from e

        try:
            self.repo.update_ref(ref, commit, parent, f"gen-provenance: generate {target_id}")
        except GitError as e:
            raise ProvenanceStoreError(f"Cannot move {ref} from {parent or '<none>'} to {commit}: {e}") from e

        LOG.info("Recorded pristine snapshot %s for %s (%d files)", commit[:12], target_id, len(blob_ids))
        return commit

    def _files_at(self, commit: str) -> dict[str, TreeFile]:
        with self._lock:
            cached = self._tree_cache.get(commit)
        if cached is not None:
            return cached
        try:
            files = {f.path: f for f in self.repo.ls_tree(commit)}
        except GitError as e:
            raise ProvenanceStoreError(f"Cannot read pristine tree of {commit}: {e}") from e
        with self._lock:
            self._tree_cache[commit] = files
        return files

    def _read_blobs(self, shas: list[str], target_id: str) -> dict[str, bytes]:
        try:
            blobs = self.repo.read_blobs(shas)
        except GitError as e:
            raise ProvenanceStoreError(f"Cannot read pristine objects for {target_id}: {e}") from e
        missing = [sha for sha, content in blobs.items() if content is None]
        if missing:
            raise PristineObjectMissingError(
                f"{len(missing)} pristine objects of {target_id} are missing locally (first: {missing[0]})", missing
            )
        return {sha: content for sha, content in blobs.items() if content is not None}

    def _write_tree(self, blob_ids: Mapping[str, str]) -> str:
        """Build nested tree objects for path -> blob id and return the root tree id."""
        root: dict = {}
        for path, sha in blob_ids.items():
            node = root
            *dirs, name = path.split("/")
            for part in dirs:
                child = node.setdefault(part, {})
                if not isinstance(child, dict):
                    raise ProvenanceStoreError(f"Path is both a file and a directory: {part} in {path}")
                node = child
            if isinstance(node.get(name), dict):
                raise ProvenanceStoreError(f"Path is both a file and a directory: {path}")
            node[name] = sha
        return self._write_node(root)

    def _write_node(self, node: dict) -> str:
        entries = []
        for name in sorted(node):
            value = node[name]
            if isinstance(value, dict):
                entries.append(TreeEntry(name=name, mode=MODE_TREE, sha=self._write_node(value)))
            else:
                mode = MODE_EXECUTABLE if is_executable_name(name) else MODE_FILE
                entries.append(TreeEntry(name=name, mode=mode, sha=value))
        return self.repo.write_tree(entries)
