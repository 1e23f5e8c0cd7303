"""Generation provenance and merge engine

Regenerates machine-generated source files while preserving hand-written
edits across regeneration cycles. Pristine generator output is kept as an
immutable history inside the host git repository, and edited files are
reconciled with new output by three-way merge.
"""

__version__ = "1.0.0"

from .errors import (
    ConflictsDetectedError,
    GenProvenanceError,
    IdentityCollisionError,
    ProvenanceStoreError,
)
from .pipeline import (
    GenerationEngine,
    ProvenanceConfig,
    StaticGenerator,
    TemplateGenerator,
    TextMerger,
    parse_conflict_markers,
)

__all__ = [
    "ConflictsDetectedError",
    "GenProvenanceError",
    "GenerationEngine",
    "IdentityCollisionError",
    "ProvenanceConfig",
    "ProvenanceStoreError",
    "StaticGenerator",
    "TemplateGenerator",
    "TextMerger",
    "parse_conflict_markers",
]
