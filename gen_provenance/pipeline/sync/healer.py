"""
Remote synchronization of provenance refs.

Provenance refs live outside refs/heads and refs/tags, so a plain clone
does not bring them along. The healer fetches a target's ref on demand,
fetches the objects a partial clone is missing by id before retrying a
store read, and publishes refs after a run. Every network failure
degrades to a warning: generation then proceeds without a base instead
of failing.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from ...errors import NetworkError, PristineObjectMissingError
from ..store.git import GitRepository
from ..store.provenance import ProvenanceStore

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class Availability(str, Enum):
    """Where the provenance ref of a target came from."""

    LOCAL = "local"  # Ref already present in the local repository
    FETCHED = "fetched"  # Ref fetched from the remote
    UNAVAILABLE = "unavailable"  # Not local and could not be fetched


class ProvenanceState(str, Enum):
    """Lifecycle state of a target's provenance ref."""

    ABSENT = "absent"  # No local ref
    LOCAL_ONLY = "local-only"  # Local ref not (yet) published
    SYNCED = "synced"  # Local and remote tips are equal
    STALE = "stale"  # Remote tip is not an ancestor of the local one


@dataclass(frozen=True)
class RefAvailability:
    """Result of ensure_ref_available.

    Attributes:
        status: Where the ref came from
        reason: Why the ref is unavailable, empty otherwise
    """

    status: Availability
    reason: str = ""

    @property
    def available(self) -> bool:
        return self.status != Availability.UNAVAILABLE


class Healer:
    """Keeps provenance reads working when refs or objects are not local."""

    def __init__(
        self,
        repo: GitRepository,
        store: ProvenanceStore,
        remote: str = "origin",
        fetch_enabled: bool = True,
        publish_enabled: bool = True,
        fetch_timeout: float = 30.0,
        push_timeout: float = 30.0,
    ):
        """Initialize the healer.

        Args:
            repo: Repository holding the provenance refs
            store: Store whose reads are retried
            remote: Remote refs are fetched from and published to
            fetch_enabled: Whether missing refs may be fetched
            publish_enabled: Whether publish_ref pushes at all
            fetch_timeout: Seconds before a fetch is abandoned
            push_timeout: Seconds before a push is abandoned
        """
        self.repo = repo
        self.store = store
        self.remote = remote
        self.fetch_enabled = fetch_enabled
        self.publish_enabled = publish_enabled
        self.fetch_timeout = fetch_timeout
        self.push_timeout = push_timeout

    def ensure_ref_available(self, target_id: str, cancel: threading.Event | None = None) -> RefAvailability:
        """Make sure the provenance ref of a target exists locally.

        A missing ref is fetched once. Every failure (no remote, network,
        authentication, ref missing remotely, timeout, cancellation) yields
        UNAVAILABLE with a reason; this method never raises NetworkError.
        """
        if self.store.tip(target_id) is not None:
            return RefAvailability(Availability.LOCAL)

        if not self.fetch_enabled:
            return self._unavailable(target_id, "fetching is disabled")

        try:
            self._fetch(target_id, cancel)
        except NetworkError as e:
            return self._unavailable(target_id, str(e))

        if self.store.tip(target_id) is None:
            return self._unavailable(target_id, f"{self.store.ref_name(target_id)} does not exist on {self.remote}")

        LOG.info("Fetched provenance ref for %s from %s", target_id, self.remote)
        return RefAvailability(Availability.FETCHED)

    def read_pristine(self, target_id: str, generated_id: str, cancel: threading.Event | None = None) -> tuple[bytes, bool]:
        """ProvenanceStore.get_pristine, fetching missing objects once."""
        return self._with_backfill(target_id, cancel, lambda: self.store.get_pristine(target_id, generated_id))

    def read_pristine_at(self, target_id: str, path: str, cancel: threading.Event | None = None) -> tuple[bytes, bool]:
        """ProvenanceStore.get_pristine_at, fetching missing objects once."""
        return self._with_backfill(target_id, cancel, lambda: self.store.get_pristine_at(target_id, path))

    def read_index(self, target_id: str, cancel: threading.Event | None = None) -> dict[str, str]:
        """ProvenanceStore.pristine_index, fetching missing objects once."""
        return self._with_backfill(target_id, cancel, lambda: self.store.pristine_index(target_id))

    def publish_ref(self, target_id: str, cancel: threading.Event | None = None) -> bool:
        """Push the provenance ref of a target, best effort.

        Returns:
            True if the push succeeded; failures are logged and return False
        """
        if not self.publish_enabled:
            return False
        ref = self.store.ref_name(target_id)
        try:
            self.repo.push_ref(self.remote, f"{ref}:{ref}", self.push_timeout, cancel)
        except NetworkError as e:
            LOG.warning("Could not publish %s to %s: %s", ref, self.remote, e)
            return False
        LOG.info("Published %s to %s", ref, self.remote)
        return True

    def provenance_state(self, target_id: str, cancel: threading.Event | None = None) -> ProvenanceState:
        """Compare the local ref of a target with the remote one.

        A local ref ahead of the remote one is LOCAL_ONLY: its newest
        snapshots are not published yet. A network failure while probing the
        remote is reported as if the ref had never been published.
        """
        ref = self.store.ref_name(target_id)
        local = self.store.tip(target_id)
        try:
            remote = self.repo.ls_remote(self.remote, ref, self.fetch_timeout, cancel)
        except NetworkError as e:
            LOG.debug("Cannot probe %s on %s: %s", ref, self.remote, e)
            remote = None

        if local is None:
            # Known only remotely: not usable until fetched
            return ProvenanceState.ABSENT
        if remote is None:
            return ProvenanceState.LOCAL_ONLY
        if remote == local:
            return ProvenanceState.SYNCED
        if self.repo.has_object(remote) and self.repo.is_ancestor(remote, local):
            return ProvenanceState.LOCAL_ONLY
        return ProvenanceState.STALE

    def _fetch(self, target_id: str, cancel: threading.Event | None) -> None:
        # Only called while the local ref is absent, so nothing is overwritten
        ref = self.store.ref_name(target_id)
        self.repo.fetch_ref(self.remote, f"{ref}:{ref}", self.fetch_timeout, cancel)

    def _with_backfill(self, target_id: str, cancel: threading.Event | None, read: Callable[[], T]) -> T:
        try:
            return read()
        except PristineObjectMissingError as e:
            if not self.fetch_enabled or not e.missing:
                raise
            LOG.warning("Pristine objects of %s missing locally, fetching %d by id: %s", target_id, len(e.missing), e)
            try:
                self.repo.fetch_objects(self.remote, e.missing, self.fetch_timeout, cancel)
            except NetworkError as fetch_error:
                LOG.warning("Fetching missing objects for %s failed: %s", target_id, fetch_error)
            return read()

    def _unavailable(self, target_id: str, reason: str) -> RefAvailability:
        LOG.warning("Provenance ref for %s unavailable, generating without a base: %s", target_id, reason)
        return RefAvailability(Availability.UNAVAILABLE, reason)
