"""
Exception types for gen_provenance.

Every error raised on purpose derives from GenProvenanceError so the CLI
and the generation engine can tell expected failures from bugs.
"""

from __future__ import annotations


class GenProvenanceError(Exception):
    """Base class for all gen_provenance errors."""


class ConfigError(GenProvenanceError):
    """Raised when a configuration file or value is invalid."""


class GenerationError(GenProvenanceError):
    """Raised when a generator cannot produce output for a target."""


class ScanError(GenProvenanceError):
    """Raised when a scan root does not exist or cannot be read."""


class IdentityCollisionError(GenProvenanceError):
    """Raised when one generated-id identifies more than one file.

    Attributes:
        collisions: Mapping of generated-id to the locations that claim it
            (relative paths, or target ids for cross-target collisions)
    """

    def __init__(self, message: str, collisions: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.collisions = collisions or {}


class GitError(GenProvenanceError):
    """Raised when a git command cannot be run or exits non-zero."""

    def __init__(self, message: str, stderr: str = "", returncode: int | None = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class GitTimeoutError(GitError):
    """Raised when a git command exceeds its timeout."""


class GitCancelledError(GitError):
    """Raised when a git command is cancelled by the caller."""


class NetworkError(GenProvenanceError):
    """Raised when a fetch or push against a remote fails."""


class ProvenanceStoreError(GenProvenanceError):
    """Raised when the provenance refs or objects cannot be read or written."""


class PristineObjectMissingError(ProvenanceStoreError):
    """Raised when a pristine object is referenced but absent locally.

    This happens in partial clones, where blobs are fetched lazily.

    Attributes:
        missing: Ids of the objects that are not available
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class ConflictsDetectedError(GenProvenanceError):
    """Raised for a target when merges left conflict markers and the
    conflict policy says the run must fail.

    Attributes:
        paths: Relative paths of the files containing conflict markers
    """

    def __init__(self, message: str, paths: list[str] | None = None):
        super().__init__(message)
        self.paths = paths or []
