"""
Sync module: on-demand fetch and best-effort publish of provenance refs.
"""

from __future__ import annotations

from .healer import Availability, Healer, ProvenanceState, RefAvailability

__all__ = [
    "Availability",
    "Healer",
    "ProvenanceState",
    "RefAvailability",
]
