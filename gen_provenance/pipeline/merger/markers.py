"""
Conflict marker vocabulary shared by the merger and the conflict scanner.
"""

from __future__ import annotations

START_MARKER = "<<<<<<<"
SEPARATOR_MARKER = "======="
END_MARKER = ">>>>>>>"

OURS_LABEL = "CURRENT (User's changes)"
BASE_LABEL = "BASE (Last generation)"
THEIRS_LABEL = "NEW (Generated code)"


def split_lines(text: str) -> list[str]:
    """Split text into lines that keep their "\n" (a "\r" stays part of the line)."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines
