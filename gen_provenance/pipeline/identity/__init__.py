"""
Identity module: generated-id markers and the scanner that indexes them.
"""

from __future__ import annotations

from .header import (
    GENERATED_ID_PATTERN,
    comment_style,
    embed_generated_id,
    extract_generated_id,
    new_generated_id,
    render_marker,
)
from .scanner import MultiScanResult, Scanner, ScanResult, scan, scan_targets

__all__ = [
    "GENERATED_ID_PATTERN",
    "MultiScanResult",
    "ScanResult",
    "Scanner",
    "comment_style",
    "embed_generated_id",
    "extract_generated_id",
    "new_generated_id",
    "render_marker",
    "scan",
    "scan_targets",
]
