"""
Git integration for the provenance store.

Every interaction with git goes through the git executable so that objects
and refs written here are exactly what `git gc`, `git fsck` and ordinary
fetch/push see. A GitRepository is the explicit handle to one repository;
nothing in the pipeline relies on the process working directory.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from ...errors import GitCancelledError, GitError, GitTimeoutError, NetworkError

LOG = logging.getLogger(__name__)

# Seconds between checks of a cancel token while a command runs
CANCEL_POLL_INTERVAL = 0.1

# Tree entry modes
MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"
MODE_TREE = "040000"


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a git tree object."""

    name: str
    mode: str
    sha: str

    @property
    def type(self) -> str:
        return "tree" if self.mode == MODE_TREE else "blob"


@dataclass(frozen=True)
class TreeFile:
    """A blob reachable from a tree, as listed by `git ls-tree -r`."""

    path: str
    mode: str
    sha: str


@dataclass(frozen=True)
class Identity:
    """Author and committer identity for commits created by the store."""

    name: str
    email: str


class GitRepository:
    """Handle to a git repository on disk."""

    def __init__(self, root: str | os.PathLike[str], timeout: float = 60.0):
        """Initialize the handle.

        Args:
            root: Top-level directory of the working tree
            timeout: Default timeout in seconds for local commands
        """
        self.root = Path(root)
        self.timeout = timeout

    @classmethod
    def discover(cls, path: str | os.PathLike[str], timeout: float = 60.0) -> GitRepository:
        """Open the repository containing path.

        Raises:
            GitError: If path is not inside a git working tree
        """
        probe = cls(path, timeout=timeout)
        toplevel = probe.run_text(["rev-parse", "--show-toplevel"]).strip()
        return cls(toplevel, timeout=timeout)

    def run(
        self,
        args: list[str],
        input_bytes: bytes | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[bytes]:
        """
        Run a git command and return the completed process.

        The command is killed when it outlives the timeout or when the
        cancel event is set.

        Raises:
            GitError: If git cannot be executed or exits non-zero while check is True
            GitTimeoutError: If the timeout expires
            GitCancelledError: If cancel is set before the command finishes
        """

        cmd = ["git", *args]
        LOG.debug("Running git command: %s", " ".join(cmd))
        timeout = self.timeout if timeout is None else timeout

        full_env = os.environ.copy()
        full_env["GIT_TERMINAL_PROMPT"] = "0"
        full_env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
        if env:
            full_env.update(env)

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=self.root,
                stdin=subprocess.PIPE if input_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=full_env,
            )
        except OSError as exc:
            raise GitError(f"failed to execute git: {exc}") from exc

        deadline = time.monotonic() + timeout
        pending_input = input_bytes
        while True:
            if cancel is not None and cancel.is_set():
                _kill(proc)
                raise GitCancelledError(f"git command cancelled: {' '.join(cmd)}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(proc)
                raise GitTimeoutError(f"git command timed out after {timeout:.0f}s: {' '.join(cmd)}")
            wait = remaining if cancel is None else min(remaining, CANCEL_POLL_INTERVAL)
            try:
                stdout, stderr = proc.communicate(input=pending_input, timeout=wait)
                break
            except subprocess.TimeoutExpired:
                pending_input = None

        completed = subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)
        if check and completed.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            LOG.debug("git stderr: %s", stderr_text)
            raise GitError(
                f"git command failed: {' '.join(cmd)}: {stderr_text}",
                stderr=stderr_text,
                returncode=completed.returncode,
            )
        return completed

    def run_text(self, args: list[str], **kwargs) -> str:
        """Run a git command and return its stdout decoded as UTF-8."""
        return self.run(args, **kwargs).stdout.decode("utf-8", errors="replace")

    # Objects

    def has_object(self, sha: str) -> bool:
        """Return True if the object exists in the local object database."""
        completed = self.run(["cat-file", "-e", sha], check=False, env={"GIT_NO_LAZY_FETCH": "1"})
        return completed.returncode == 0

    def write_blob(self, content: bytes) -> str:
        """Write content as a blob and return its id."""
        return self.run_text(["hash-object", "-w", "--stdin"], input_bytes=content).strip()

    def read_blob(self, sha: str) -> bytes:
        """Return the content of a blob."""
        return self.run(["cat-file", "blob", sha]).stdout

    def read_blobs(self, shas: list[str]) -> dict[str, bytes | None]:
        """Read many blobs with one `git cat-file --batch` process.

        Lazy fetching is disabled, so objects absent from a partial clone
        come back as None instead of stalling on the network.

        Returns:
            Blob id to content, or None for objects missing locally
        """
        unique = list(dict.fromkeys(shas))
        if not unique:
            return {}
        request = "".join(f"{sha}\n" for sha in unique).encode("ascii")
        out = self.run(["cat-file", "--batch"], input_bytes=request, env={"GIT_NO_LAZY_FETCH": "1"}).stdout

        blobs: dict[str, bytes | None] = {}
        pos = 0
        for sha in unique:
            header_end = out.index(b"\n", pos)
            header = out[pos:header_end].decode("ascii", errors="replace").split()
            pos = header_end + 1
            if len(header) == 2 and header[1] == "missing":
                blobs[sha] = None
                continue
            if len(header) != 3:
                raise GitError(f"unexpected cat-file output for {sha}: {' '.join(header)}")
            size = int(header[2])
            blobs[sha] = out[pos : pos + size]
            pos += size + 1
        return blobs

    def write_tree(self, entries: list[TreeEntry]) -> str:
        """Write a single-level tree object and return its id."""
        lines = b"".join(f"{e.mode} {e.type} {e.sha}\t{e.name}".encode() + b"\0" for e in entries)
        return self.run_text(["mktree", "-z"], input_bytes=lines).strip()

    def ls_tree(self, treeish: str) -> list[TreeFile]:
        """List every blob reachable from a tree, recursively."""
        out = self.run(["ls-tree", "-r", "-z", "--full-tree", treeish]).stdout
        files = []
        for record in out.split(b"\0"):
            if not record:
                continue
            meta, _, path = record.partition(b"\t")
            mode, obj_type, sha = meta.decode("ascii").split()
            if obj_type != "blob":
                continue
            files.append(TreeFile(path=path.decode("utf-8", errors="surrogateescape"), mode=mode, sha=sha))
        return files

    def commit_tree(self, tree: str, parent: str | None, message: str, identity: Identity) -> str:
        """Create a commit object and return its id."""
        args = ["commit-tree", tree]
        if parent:
            args += ["-p", parent]
        env = {
            "GIT_AUTHOR_NAME": identity.name,
            "GIT_AUTHOR_EMAIL": identity.email,
            "GIT_COMMITTER_NAME": identity.name,
            "GIT_COMMITTER_EMAIL": identity.email,
        }
        return self.run_text(args, input_bytes=message.encode("utf-8"), env=env).strip()

    # Refs

    def resolve_commit(self, ref: str) -> str | None:
        """Return the commit a ref points to, or None if it does not exist."""
        completed = self.run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], check=False)
        if completed.returncode != 0:
            return None
        return completed.stdout.decode("ascii").strip() or None

    def update_ref(self, ref: str, new: str, old: str | None, message: str) -> None:
        """Move ref to new, but only if it currently points to old.

        old=None requires that the ref does not exist yet.
        """
        self.run(["update-ref", "-m", message, ref, new, old or ""])

    def list_refs(self, prefix: str) -> dict[str, str]:
        """Return ref name to object id for all refs under prefix."""
        out = self.run_text(["for-each-ref", "--format=%(objectname) %(refname)", prefix])
        refs = {}
        for line in out.splitlines():
            sha, _, name = line.partition(" ")
            if name:
                refs[name] = sha
        return refs

    def check_ref_format(self, ref: str) -> bool:
        """Return True if ref is a valid full ref name."""
        return self.run(["check-ref-format", ref], check=False).returncode == 0

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Return True if ancestor is reachable from descendant."""
        completed = self.run(["merge-base", "--is-ancestor", ancestor, descendant], check=False)
        if completed.returncode in (0, 1):
            return completed.returncode == 0
        raise GitError(f"merge-base failed for {ancestor} {descendant}", stderr=completed.stderr.decode(errors="replace"))

    # Remotes

    def remote_url(self, name: str) -> str | None:
        """Return the URL of a remote, or None if it is not configured."""
        completed = self.run(["remote", "get-url", name], check=False)
        if completed.returncode != 0:
            return None
        return completed.stdout.decode("utf-8", errors="replace").strip() or None

    def fetch_ref(self, remote: str, refspec: str, timeout: float, cancel: threading.Event | None = None) -> None:
        """Fetch one refspec from a remote.

        Raises:
            NetworkError: If the remote is missing or the fetch fails for any reason
        """
        self._network(["fetch", "--no-tags", "--no-write-fetch-head", remote, refspec], remote, timeout, cancel)

    def fetch_objects(self, remote: str, shas: list[str], timeout: float, cancel: threading.Event | None = None) -> None:
        """Fetch objects by id, the way a partial clone backfills missing blobs.

        The remote must serve objects by id (protocol v2, or
        uploadpack.allowAnySHA1InWant).

        Raises:
            NetworkError: If the remote is missing or the fetch fails for any reason
        """
        if not shas:
            return
        args = [
            "-c",
            "fetch.negotiationAlgorithm=noop",
            "fetch",
            "--no-tags",
            "--no-write-fetch-head",
            "--recurse-submodules=no",
            "--stdin",
            remote,
        ]
        self._network(args, remote, timeout, cancel, input_bytes="".join(f"{sha}\n" for sha in shas).encode("ascii"))

    def push_ref(self, remote: str, refspec: str, timeout: float, cancel: threading.Event | None = None) -> None:
        """Push one refspec to a remote.

        Raises:
            NetworkError: If the remote is missing or the push fails for any reason
        """
        self._network(["push", "--no-verify", remote, refspec], remote, timeout, cancel)

    def ls_remote(self, remote: str, ref: str, timeout: float, cancel: threading.Event | None = None) -> str | None:
        """Return the id a ref has on the remote, or None if absent there.

        Raises:
            NetworkError: If the remote cannot be queried
        """
        out = self._network(["ls-remote", "--refs", remote, ref], remote, timeout, cancel)
        for line in out.splitlines():
            sha, _, name = line.partition("\t")
            if name == ref:
                return sha
        return None

    def _network(
        self,
        args: list[str],
        remote: str,
        timeout: float,
        cancel: threading.Event | None,
        input_bytes: bytes | None = None,
    ) -> str:
        if self.remote_url(remote) is None:
            raise NetworkError(f"remote '{remote}' not found")
        try:
            return self.run_text(args, input_bytes=input_bytes, timeout=timeout, cancel=cancel)
        except GitError as exc:
            raise NetworkError(str(exc)) from exc

    # Merging

    def merge_file(self, base: bytes, ours: bytes, theirs: bytes, labels: tuple[str, str, str]) -> tuple[bytes, int]:
        """Three-way merge file contents with `git merge-file`.

        Conflicts are written in the plain two-sided style whatever
        merge.conflictStyle says, with the markers labelled by ours and
        theirs from labels (ours, base, theirs).

        Returns:
            The merged content and the number of conflicts (0 when clean)

        Raises:
            GitError: If git cannot merge the inputs
        """
        with tempfile.TemporaryDirectory(prefix="gen-provenance-merge-") as tmp:
            paths = []
            for name, content in (("ours", ours), ("base", base), ("theirs", theirs)):
                path = Path(tmp) / name
                path.write_bytes(content)
                paths.append(str(path))
            args = ["-c", "merge.conflictStyle=merge", "merge-file", "-p"]
            for label in labels:
                args += ["-L", label]
            completed = self.run([*args, *paths], check=False)
        # Exit status is the conflict count, capped at 127; errors are negative
        if not 0 <= completed.returncode <= 127:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise GitError(f"git merge-file failed: {stderr}", stderr=stderr, returncode=completed.returncode)
        return completed.stdout, completed.returncode

    # Index

    def set_conflict_state(self, path: str, base: bytes | None, ours: bytes, theirs: bytes, executable: bool = False) -> None:
        """Record path as unmerged in the index (stages 1, 2 and 3).

        `git status` and `git mergetool` then treat the file as conflicted.
        Stage 1 is omitted when there is no base.

        Args:
            path: Path relative to the repository root
        """
        mode = MODE_EXECUTABLE if executable else MODE_FILE
        zero = "0" * len(self.write_blob(b""))
        lines = [f"0 {zero}\t{path}"]
        for stage, content in ((1, base), (2, ours), (3, theirs)):
            if content is None:
                continue
            lines.append(f"{mode} {self.write_blob(content)} {stage}\t{path}")
        self.run(["update-index", "--index-info"], input_bytes=("\n".join(lines) + "\n").encode("utf-8"))


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        LOG.warning("git process %s did not exit after kill", proc.pid)
