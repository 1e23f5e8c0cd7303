"""
Pipeline - provenance-tracked regeneration of generated source files.

This module reconciles fresh generator output with hand-edited working
copies across regeneration cycles:

1. Identity: find generated files by their @generated-id marker
2. Store: keep every pristine generation as a commit under refs/speakeasy/gen/
3. Sync: fetch and publish those refs, degrading gracefully when offline
4. Merger: three-way merge of pristine base, working copy and new output
5. Engine: run the above for many targets concurrently
"""

from __future__ import annotations

from .changes import FileChangeSummary, FileDiff, compute_file_diff, detect_file_changes, restore_pristine
from .config import ConflictPolicy, NoBasePolicy, ProvenanceConfig, RemoteConfig, TargetConfig
from .engine import FileOutcome, FileStatus, GenerationEngine, RunResult, TargetResult
from .generator import Generator, StaticGenerator, TemplateGenerator
from .identity import MultiScanResult, Scanner, ScanResult, scan, scan_targets
from .merger import AtomicWriter, ConflictRegion, MergeResult, MergeStatus, TextMerger, parse_conflict_markers
from .store import GitRepository, ProvenanceStore
from .sync import Availability, Healer, ProvenanceState, RefAvailability

__all__ = [
    "Availability",
    "AtomicWriter",
    "ConflictPolicy",
    "ConflictRegion",
    "FileChangeSummary",
    "FileDiff",
    "FileOutcome",
    "FileStatus",
    "GenerationEngine",
    "Generator",
    "GitRepository",
    "Healer",
    "MergeResult",
    "MergeStatus",
    "MultiScanResult",
    "NoBasePolicy",
    "ProvenanceConfig",
    "ProvenanceState",
    "ProvenanceStore",
    "RefAvailability",
    "RemoteConfig",
    "RunResult",
    "ScanResult",
    "Scanner",
    "StaticGenerator",
    "TargetConfig",
    "TargetResult",
    "TemplateGenerator",
    "TextMerger",
    "compute_file_diff",
    "detect_file_changes",
    "parse_conflict_markers",
    "restore_pristine",
    "scan",
    "scan_targets",
]
