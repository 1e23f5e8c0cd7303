"""
Store module: git plumbing and the pristine snapshot history kept in
refs/speakeasy/gen/.
"""

from __future__ import annotations

from .git import GitRepository, Identity, TreeEntry, TreeFile
from .provenance import DEFAULT_IDENTITY, REF_PREFIX, ProvenanceStore

__all__ = [
    "DEFAULT_IDENTITY",
    "GitRepository",
    "Identity",
    "ProvenanceStore",
    "REF_PREFIX",
    "TreeEntry",
    "TreeFile",
]
