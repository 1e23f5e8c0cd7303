"""
Atomic file writer for merged output.

Ensures that a working file is either left untouched or fully replaced,
so an interrupted run never leaves half a merge on disk.
"""

from __future__ import annotations

import os
import stat
import tempfile
from pathlib import Path


class AtomicWriter:
    """Handles atomic file writes.

    Uses a two-phase approach:
    1. Write to a temporary file in the same directory
    2. Atomically replace the target file

    The temporary file lives next to the target so the final rename never
    crosses a filesystem boundary.
    """

    def __init__(self, fsync: bool = True):
        """Initialize the atomic writer.

        Args:
            fsync: Whether to flush file contents to disk before the rename
        """
        self.fsync = fsync

    def write(self, path: Path, content: bytes, executable: bool | None = None) -> None:
        """Write content to file atomically.

        Args:
            path: Target file path
            content: Bytes to write
            executable: Set (True) or clear (False) the executable bits; None
                keeps the mode of an existing file

        Raises:
            OSError: If file operations fail
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        mode = self._target_mode(path, executable)

        temp_fd, temp_path_str = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        temp_path = Path(temp_path_str)

        try:
            with open(temp_fd, "wb") as f:
                f.write(content)
                if self.fsync:
                    f.flush()
                    os.fsync(f.fileno())
            os.chmod(temp_path, mode)
            os.replace(temp_path, path)
        except BaseException:
            # Clean up temp file on any error
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            raise

    def remove(self, path: Path) -> bool:
        """Delete a file if it exists.

        Returns:
            True if a file was removed
        """
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        return True

    @staticmethod
    def _target_mode(path: Path, executable: bool | None) -> int:
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            umask = os.umask(0)
            os.umask(umask)
            mode = 0o666 & ~umask
        if executable is True:
            # Grant execute wherever read is granted
            mode |= (mode & 0o444) >> 2
        elif executable is False:
            mode &= ~0o111
        return mode
