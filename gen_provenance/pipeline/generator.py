"""
Generators: the producers of fresh output for a target.

The engine treats output as opaque bytes keyed by a path relative to the
target's output directory. StaticGenerator serves fixed content;
TemplateGenerator renders a directory of jinja2 templates.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from ..errors import ConfigError, GenerationError
from ..utils import to_posix_relpath
from .config import TargetConfig

LOG = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".jinja2"


class Generator(Protocol):
    """Produces the complete output of one target."""

    def generate(self, target: TargetConfig) -> dict[str, bytes]:
        """Return relative output path to file content."""
        ...


class StaticGenerator:
    """Serves fixed output per target id."""

    def __init__(self, outputs: Mapping[str, Mapping[str, bytes]] | None = None):
        self.outputs: dict[str, dict[str, bytes]] = {k: dict(v) for k, v in (outputs or {}).items()}

    def set_output(self, target_id: str, files: Mapping[str, bytes]) -> None:
        self.outputs[target_id] = dict(files)

    def generate(self, target: TargetConfig) -> dict[str, bytes]:
        return dict(self.outputs.get(target.id, {}))


class TemplateGenerator:
    """Renders a target's template directory with jinja2.

    Files ending in `.jinja2` are rendered with the target context and
    written without the suffix; every other file is copied verbatim.
    """

    def __init__(self, template_dir: str | Path | None = None, context: Mapping[str, Any] | None = None):
        """Initialize the generator.

        Args:
            template_dir: Template directory; defaults to the target's template_dir
            context: Extra template variables, overridden by the target context
        """
        self.template_dir = Path(template_dir) if template_dir is not None else None
        self.context = dict(context or {})

    def generate(self, target: TargetConfig) -> dict[str, bytes]:
        template_dir = self.template_dir or (Path(target.template_dir) if target.template_dir else None)
        if template_dir is None:
            raise ConfigError(f"Target {target.id} has no template_dir")
        if not template_dir.is_dir():
            raise ConfigError(f"Template directory not found for target {target.id}: {template_dir}")

        env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        context = {**self.context, **target.context, "target_id": target.id}

        output: dict[str, bytes] = {}
        for source in sorted(p for p in template_dir.rglob("*") if p.is_file()):
            rel = to_posix_relpath(source, template_dir)
            if rel.endswith(TEMPLATE_SUFFIX):
                out_path = rel[: -len(TEMPLATE_SUFFIX)]
                try:
                    rendered = env.get_template(rel).render(**context)
                except TemplateError as e:
                    raise GenerationError(f"Cannot render {rel} for target {target.id}: {e}") from e
                output[out_path] = rendered.encode("utf-8")
            else:
                output[rel] = source.read_bytes()

        LOG.debug("Rendered %d files for target %s from %s", len(output), target.id, template_dir)
        return output
