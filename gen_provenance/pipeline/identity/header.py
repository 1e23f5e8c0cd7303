"""
The @generated-id identity marker.

Every tracked file carries one comment line of the form

    <comment> @generated-id: <uuid>

near its top. The marker is rendered with jinja2 in the comment syntax of
the file's language and is what ties a file on disk to its pristine history
across renames and regenerations.
"""

from __future__ import annotations

import re
import uuid
from pathlib import PurePosixPath

import jinja2

# Lines searched for the marker
HEADER_SCAN_LINES = 20

# Canonical UUID, or the legacy 12-hex short id
GENERATED_ID_PATTERN = re.compile(
    rb"@generated-id:[ \t]*([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}|[0-9a-f]{12})(?![0-9a-f-])"
)

_MARKER_TEMPLATES = {
    "hash": "# @generated-id: {{ generated_id }}",
    "slash": "// @generated-id: {{ generated_id }}",
    "dash": "-- @generated-id: {{ generated_id }}",
    "html": "<!-- @generated-id: {{ generated_id }} -->",
    "block": "/* @generated-id: {{ generated_id }} */",
}

_STYLE_BY_SUFFIX = {
    **dict.fromkeys(
        (".py", ".pyi", ".rb", ".sh", ".bash", ".zsh", ".yaml", ".yml", ".toml", ".r", ".pl", ".ps1", ".tf", ".cfg", ".ex", ".exs"),
        "hash",
    ),
    **dict.fromkeys(
        (
            ".go", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".java", ".kt", ".kts", ".cs", ".swift",
            ".scala", ".rs", ".c", ".h", ".cc", ".cpp", ".hpp", ".dart", ".php", ".gradle", ".proto",
        ),
        "slash",
    ),
    **dict.fromkeys((".sql", ".lua", ".hs"), "dash"),
    **dict.fromkeys((".md", ".html", ".htm", ".xml", ".vue", ".svg", ".csproj"), "html"),
    **dict.fromkeys((".css", ".scss", ".less"), "block"),
}

_STYLE_BY_NAME = {
    "Makefile": "hash",
    "Dockerfile": "hash",
    "Gemfile": "hash",
    "gradlew": "hash",
    "mvnw": "hash",
}

# First lines that must stay first
_PREAMBLE_PREFIXES = (b"#!", b"<?xml", b"<?php", b"# -*-", b"# vim:")

_jinja_env = jinja2.Environment(
    loader=jinja2.DictLoader(_MARKER_TEMPLATES),
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    keep_trailing_newline=False,
)


def new_generated_id() -> str:
    """Return a fresh random generated-id."""
    return str(uuid.uuid4())


def comment_style(path: str) -> str | None:
    """Return the marker template name for a path, or None if the file type
    has no comment syntax (e.g. JSON)."""
    name = PurePosixPath(path).name
    if name in _STYLE_BY_NAME:
        return _STYLE_BY_NAME[name]
    return _STYLE_BY_SUFFIX.get(PurePosixPath(name).suffix.lower())


def render_marker(path: str, generated_id: str) -> str | None:
    """Render the marker comment line for a path, without a line ending."""
    style = comment_style(path)
    if style is None:
        return None
    return _jinja_env.get_template(style).render(generated_id=generated_id)


def extract_generated_id(content: bytes) -> str | None:
    """Return the generated-id found in the first lines of content, if any."""
    head = content.split(b"\n", HEADER_SCAN_LINES)[:HEADER_SCAN_LINES]
    for line in head:
        match = GENERATED_ID_PATTERN.search(line)
        if match:
            return match.group(1).decode("ascii")
    return None


def embed_generated_id(path: str, content: bytes, generated_id: str) -> bytes:
    """Insert the marker for generated_id into content.

    The marker goes on the first line, or on the second line when the first
    one is a shebang, XML/PHP declaration or encoding comment. Content that
    already carries a marker, or whose file type has no comment syntax, is
    returned unchanged.

    Args:
        path: Relative path of the file, used to pick the comment syntax
        content: File content as produced by the generator
        generated_id: Identifier to embed

    Returns:
        Content with the marker embedded
    """
    if extract_generated_id(content) is not None:
        return content

    marker = render_marker(path, generated_id)
    if marker is None:
        return content

    newline = b"\r\n" if b"\r\n" in content.split(b"\n", 1)[0] + b"\n" else b"\n"
    marker_line = marker.encode("utf-8") + newline

    if content.startswith(_PREAMBLE_PREFIXES):
        first, sep, rest = content.partition(b"\n")
        if not sep:
            return first + newline + marker_line
        return first + sep + marker_line + rest
    return marker_line + content
