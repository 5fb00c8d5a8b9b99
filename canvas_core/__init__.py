"""
Infracanvas Core - Shape models, containment, layout, canonical export and share codec.

This package holds the pure logic used by both the backend session and the
CLI, so containment and export behave identically everywhere.
"""

from .catalog import ComponentCatalog, ComponentKind, ComponentSpec, DEFAULT_COMPONENTS

from .models import (
    # Shapes
    ContainerShape,
    LeafShape,
    ArrowShape,
    ArrowBinding,
    Shape,
    ShapeInit,
    Terminal,
    PositionUpdate,
    # Canonical export model
    CanvasItem,
    Connection,
    ExportMetadata,
    CanonicalDiagram,
    # Record mapping
    shape_from_record,
    binding_from_record,
    build_snapshot,
    empty_snapshot,
    parse_snapshot,
    PAGE_ROOT_ID,
)

from .errors import (
    CanvasError,
    DecodeError,
    UnsupportedFormatError,
    DanglingReferenceError,
    GenerationError,
)

from .geometry import find_parent_container, resolve_parents
from .layout import hierarchical_layout, LayoutDirection, LayoutOptions
from .canonical import canonicalize, BindingList
from .generators import ExportFormat, ExportResult, FormatRegistry, default_registry, export_diagram
from .codec import encode_snapshot, decode_snapshot
from .validation import validate_diagram, validation_summary, ValidationIssue, IssueSeverity

__all__ = [
    # Catalog
    "ComponentCatalog",
    "ComponentKind",
    "ComponentSpec",
    "DEFAULT_COMPONENTS",
    # Shapes
    "ContainerShape",
    "LeafShape",
    "ArrowShape",
    "ArrowBinding",
    "Shape",
    "ShapeInit",
    "Terminal",
    "PositionUpdate",
    # Canonical model
    "CanvasItem",
    "Connection",
    "ExportMetadata",
    "CanonicalDiagram",
    # Record mapping
    "shape_from_record",
    "binding_from_record",
    "build_snapshot",
    "empty_snapshot",
    "parse_snapshot",
    "PAGE_ROOT_ID",
    # Errors
    "CanvasError",
    "DecodeError",
    "UnsupportedFormatError",
    "DanglingReferenceError",
    "GenerationError",
    # Geometry & layout
    "find_parent_container",
    "resolve_parents",
    "hierarchical_layout",
    "LayoutDirection",
    "LayoutOptions",
    # Export
    "canonicalize",
    "BindingList",
    "ExportFormat",
    "ExportResult",
    "FormatRegistry",
    "default_registry",
    "export_diagram",
    # Codec
    "encode_snapshot",
    "decode_snapshot",
    # Validation
    "validate_diagram",
    "validation_summary",
    "ValidationIssue",
    "IssueSeverity",
]
