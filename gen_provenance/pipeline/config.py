"""
Configuration for the provenance pipeline.

A ProvenanceConfig describes the repository, the generation targets that
write into it, and how the engine talks to the remote.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import ConfigError


class ConflictPolicy(str, Enum):
    """What a target does when merges leave conflict markers behind."""

    WARN = "warn"  # Default: write markers, report, keep going
    FAIL = "fail"  # Write markers, commit the snapshot, report the target as failed


class NoBasePolicy(str, Enum):
    """How a file is reconciled when no pristine base exists for it.

    Only applies when the file on disk differs from the new output.
    """

    OURS = "ours"  # Default: keep the file on disk untouched
    THEIRS = "theirs"  # Generator is authoritative, overwrite
    CONFLICT = "conflict"  # Wrap both versions in conflict markers


@dataclass
class RemoteConfig:
    """Configuration for provenance ref synchronization.

    Attributes:
        name: Git remote used to fetch and publish provenance refs
        fetch: Whether missing refs are fetched before merging
        publish: Whether refs are pushed after a successful generation
        fetch_timeout: Seconds before a fetch is abandoned
        push_timeout: Seconds before a push is abandoned
    """

    name: str = "origin"
    fetch: bool = True
    publish: bool = True
    fetch_timeout: float = 30.0
    push_timeout: float = 30.0


@dataclass
class TargetConfig:
    """One generation target.

    Attributes:
        id: Target identifier, used as the provenance ref name component
        output_dir: Output directory, relative to the repository root
        template_dir: Directory of templates rendered by TemplateGenerator
        context: Template context, inline or loaded from a JSON file
    """

    id: str
    output_dir: str = "."
    template_dir: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(d: dict, base_dir: Path | None = None) -> TargetConfig:
        """Create a target from a dictionary."""
        if not isinstance(d, dict) or not d.get("id"):
            raise ConfigError(f"Target entry needs an 'id': {d!r}")

        context = d.get("context", {})
        if isinstance(context, str):
            context_path = Path(context)
            if base_dir is not None and not context_path.is_absolute():
                context_path = base_dir / context_path
            try:
                with open(context_path, encoding="utf-8") as f:
                    context = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot load context for target {d['id']}: {e}") from e
        if not isinstance(context, dict):
            raise ConfigError(f"Context for target {d['id']} must be an object")

        template_dir = d.get("template_dir")
        if template_dir is not None and base_dir is not None and not Path(template_dir).is_absolute():
            template_dir = str(base_dir / template_dir)

        return TargetConfig(
            id=str(d["id"]),
            output_dir=d.get("output_dir", "."),
            template_dir=template_dir,
            context=context,
        )

    def to_dict(self) -> dict:
        """Convert target to a dictionary."""
        return {
            "id": self.id,
            "output_dir": self.output_dir,
            "template_dir": self.template_dir,
            "context": self.context,
        }


@dataclass
class ProvenanceConfig:
    """Configuration options for a provenance-tracked generation run."""

    # Root of the git repository (and base of every target output_dir)
    repo_root: str = "."

    # Generation targets
    targets: list[TargetConfig] = field(default_factory=list)

    # Remote used by the healer
    remote: RemoteConfig = field(default_factory=RemoteConfig)

    # Whether conflict markers fail the target
    conflict_policy: ConflictPolicy = ConflictPolicy.WARN

    # How files without a pristine base are reconciled
    no_base_policy: NoBasePolicy = NoBasePolicy.OURS

    # Targets generated in parallel
    max_workers: int = 4

    # Seconds before a local git command is abandoned
    git_timeout: float = 60.0

    # Insert @generated-id headers into output that lacks one
    embed_ids: bool = True

    # Record conflicted files as unmerged index entries (stages 1-3)
    mark_conflicts_in_index: bool = False

    # Identity used for provenance commits
    author_name: str = "gen-provenance"
    author_email: str = "gen-provenance@localhost"

    def target(self, target_id: str) -> TargetConfig:
        """Return the target with the given id.

        Raises:
            ConfigError: If no such target is configured
        """
        for target in self.targets:
            if target.id == target_id:
                return target
        raise ConfigError(f"Unknown target: {target_id}")

    def output_path(self, target: TargetConfig) -> Path:
        """Absolute output directory of a target."""
        return (Path(self.repo_root) / target.output_dir).resolve()

    def validate(self) -> None:
        """Check invariants that from_dict() cannot express.

        Raises:
            ConfigError: If target ids repeat, an output directory leaves the
                repository, or numeric options are out of range
        """
        seen: set[str] = set()
        root = Path(self.repo_root).resolve()
        for target in self.targets:
            if target.id in seen:
                raise ConfigError(f"Duplicate target id: {target.id}")
            seen.add(target.id)
            if not self.output_path(target).is_relative_to(root):
                raise ConfigError(f"Output directory of target {target.id} is outside the repository: {target.output_dir}")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if self.git_timeout <= 0 or self.remote.fetch_timeout <= 0 or self.remote.push_timeout <= 0:
            raise ConfigError("Timeouts must be positive")

    @staticmethod
    def from_dict(d: dict, base_dir: Path | None = None) -> ProvenanceConfig:
        """Create a config from a dictionary.

        Relative repo_root, template_dir and context paths are resolved
        against base_dir when given. Unknown keys are ignored.
        """
        config = ProvenanceConfig()
        try:
            for k, v in d.items():
                if k == "targets":
                    config.targets = [TargetConfig.from_dict(t, base_dir) for t in v]
                elif k == "remote" and isinstance(v, dict):
                    config.remote = RemoteConfig(**v)
                elif k == "conflict_policy":
                    config.conflict_policy = ConflictPolicy(v)
                elif k == "no_base_policy":
                    config.no_base_policy = NoBasePolicy(v)
                elif hasattr(config, k):
                    setattr(config, k, v)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        if base_dir is not None and not Path(config.repo_root).is_absolute():
            config.repo_root = str((base_dir / config.repo_root).resolve())

        config.validate()
        return config

    @staticmethod
    def load(path: str | Path) -> ProvenanceConfig:
        """Load a config from a JSON file.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot load config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a JSON object")
        return ProvenanceConfig.from_dict(data, base_dir=path.resolve().parent)

    def to_dict(self) -> dict:
        """Convert config to a dictionary."""
        return {
            "repo_root": self.repo_root,
            "targets": [t.to_dict() for t in self.targets],
            "remote": {
                "name": self.remote.name,
                "fetch": self.remote.fetch,
                "publish": self.remote.publish,
                "fetch_timeout": self.remote.fetch_timeout,
                "push_timeout": self.remote.push_timeout,
            },
            "conflict_policy": self.conflict_policy.value,
            "no_base_policy": self.no_base_policy.value,
            "max_workers": self.max_workers,
            "git_timeout": self.git_timeout,
            "embed_ids": self.embed_ids,
            "mark_conflicts_in_index": self.mark_conflicts_in_index,
            "author_name": self.author_name,
            "author_email": self.author_email,
        }
