"""
Core data models for the infrastructure canvas.

Two families of models live here:

Store-side shapes (what the shape store holds):
- ContainerShape: a containment boundary (VPC, subnet, availability zone)
- LeafShape: a typed component (compute, database, ...)
- ArrowShape: a connector; its endpoints are ArrowBinding records
Raw snapshot records (camelCase dicts) are converted to these variants only
through ``shape_from_record`` / ``binding_from_record`` and back through
``to_record()``. Missing or malformed props degrade to the kind defaults.

Export-side value objects (rebuilt on every export):
- CanvasItem, Connection, ExportMetadata, CanonicalDiagram
These serialize with camelCase keys (``isBoundingBox``, ``parentId``, ...).
"""

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .catalog import MIN_HEIGHT, MIN_WIDTH, ComponentCatalog
from .errors import DecodeError


PAGE_ROOT_ID = "page:page"
ARROW_TYPE = "arrow"
SNAPSHOT_SCHEMA_VERSION = 1
EXPORT_VERSION = "1.0.0"

_BUILTIN_CATALOG = ComponentCatalog()

# Props that map onto model fields; everything else lands in `properties`
_BOX_PROP_KEYS = {"w", "h", "label", "color", "componentId", "isBoundingBox", "opacity"}
_ARROW_PROP_KEYS = {"text"}


class Terminal(str, Enum):
    """Which end of an arrow a binding attaches."""
    START = "start"
    END = "end"


def generate_shape_id() -> str:
    """Generate a unique shape ID."""
    return f"shape:{uuid.uuid4().hex[:8]}"


def generate_binding_id() -> str:
    """Generate a unique binding ID."""
    return f"binding:{uuid.uuid4().hex[:8]}"


# --- Shapes ---

class ShapeBase(BaseModel):
    """Fields shared by every shape variant."""
    id: str = Field(default_factory=generate_shape_id)
    type: str
    x: float = 0
    y: float = 0
    parent_id: str = PAGE_ROOT_ID
    index: int = 0  # z-order within the parent; higher is in front
    seq: int = 0    # creation counter assigned by the store

    def to_record(self) -> dict:
        """Convert to a snapshot record (camelCase, host-store layout)."""
        return {
            "id": self.id,
            "typeName": "shape",
            "type": self.type,
            "x": self.x,
            "y": self.y,
            "parentId": self.parent_id,
            "index": self.index,
            "meta": {"seq": self.seq},
            "props": self._record_props(),
        }

    def _record_props(self) -> dict:
        return {}


class BoxShape(ShapeBase):
    """A shape with a rectangle: containers and leaves."""
    w: float = 120
    h: float = 80
    label: str = ""
    color: str = "blue"
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def component_kind(self) -> str:
        return self.type

    @property
    def area(self) -> float:
        return self.w * self.h

    def center(self) -> tuple[float, float]:
        """Get the center point of the shape."""
        return (self.x + self.w / 2, self.y + self.h / 2)

    def bounds(self) -> tuple[float, float, float, float]:
        """Get the bounding box (x, y, right, bottom)."""
        return (self.x, self.y, self.x + self.w, self.y + self.h)

    def _record_props(self) -> dict:
        props = dict(self.properties)
        props.update({
            "w": self.w,
            "h": self.h,
            "label": self.label,
            "color": self.color,
            "componentId": self.type,
            "isBoundingBox": False,
        })
        return props


class ContainerShape(BoxShape):
    """A containment boundary that can own child shapes."""
    kind: Literal["container"] = "container"
    opacity: float = 0.2

    def _record_props(self) -> dict:
        props = super()._record_props()
        props["isBoundingBox"] = True
        props["opacity"] = self.opacity
        return props


class LeafShape(BoxShape):
    """A typed infrastructure component."""
    kind: Literal["leaf"] = "leaf"


class ArrowShape(ShapeBase):
    """A connector between two shapes. Endpoints live in ArrowBinding records."""
    kind: Literal["arrow"] = "arrow"
    type: str = ARROW_TYPE
    label: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)

    def _record_props(self) -> dict:
        props = dict(self.properties)
        props["text"] = self.label
        return props


Shape = Union[ContainerShape, LeafShape, ArrowShape]


class ArrowBinding(BaseModel):
    """Attaches one terminal of an arrow to a shape."""
    id: str = Field(default_factory=generate_binding_id)
    arrow_id: str
    shape_id: str
    terminal: Terminal

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "typeName": "binding",
            "type": "arrow",
            "fromId": self.arrow_id,
            "toId": self.shape_id,
            "props": {"terminal": self.terminal.value},
        }


class ShapeInit(BaseModel):
    """Arguments for creating a shape; unset fields take the kind defaults."""
    type: str
    x: float = 0
    y: float = 0
    id: Optional[str] = None
    w: Optional[float] = None
    h: Optional[float] = None
    label: Optional[str] = None
    parent_id: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)


# --- Record mapping (store boundary) ---

def _number(value: Any, default: float) -> float:
    """Coerce a record value to a finite float, or return the default."""
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(result):
        return default
    return result


def _string(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value else default


def shape_from_record(record: Any, catalog: Optional[ComponentCatalog] = None) -> Shape:
    """
    Convert a raw shape record into its tagged variant.

    Raises DecodeError only for structurally unusable records (not a mapping,
    no id); every other defect falls back to the kind's defaults.
    """
    if not isinstance(record, dict):
        raise DecodeError(f"Shape record must be an object, got {type(record).__name__}")
    shape_id = record.get("id")
    if not isinstance(shape_id, str) or not shape_id:
        raise DecodeError("Shape record is missing an id")

    catalog = catalog or _BUILTIN_CATALOG
    props = record.get("props") if isinstance(record.get("props"), dict) else {}
    meta = record.get("meta") if isinstance(record.get("meta"), dict) else {}
    shape_type = _string(record.get("type"), _string(props.get("componentId"), "component"))

    common = {
        "id": shape_id,
        "type": shape_type,
        "x": _number(record.get("x"), 0),
        "y": _number(record.get("y"), 0),
        "parent_id": _string(record.get("parentId"), PAGE_ROOT_ID),
        "index": int(_number(record.get("index"), 0)),
        "seq": int(_number(meta.get("seq"), 0)),
    }

    if shape_type == ARROW_TYPE:
        return ArrowShape(
            label=_string(props.get("text"), ""),
            properties={k: v for k, v in props.items() if k not in _ARROW_PROP_KEYS},
            **common,
        )

    spec = catalog.spec_for(shape_type)
    is_container = props.get("isBoundingBox")
    if not isinstance(is_container, bool):
        is_container = spec.is_container

    box = {
        "w": max(_number(props.get("w"), spec.width), MIN_WIDTH),
        "h": max(_number(props.get("h"), spec.height), MIN_HEIGHT),
        "label": _string(props.get("label"), spec.label),
        "color": _string(props.get("color"), spec.color),
        "properties": {k: v for k, v in props.items() if k not in _BOX_PROP_KEYS},
    }
    if is_container:
        default_opacity = spec.opacity if spec.opacity is not None else 0.2
        opacity = min(max(_number(props.get("opacity"), default_opacity), 0.0), 1.0)
        return ContainerShape(opacity=opacity, **box, **common)
    return LeafShape(**box, **common)


def binding_from_record(record: Any) -> ArrowBinding:
    """Convert a raw binding record into an ArrowBinding."""
    if not isinstance(record, dict):
        raise DecodeError("Binding record must be an object")
    props = record.get("props") if isinstance(record.get("props"), dict) else {}
    try:
        return ArrowBinding(
            id=record["id"],
            arrow_id=record["fromId"],
            shape_id=record["toId"],
            terminal=Terminal(props.get("terminal")),
        )
    except (KeyError, ValueError) as e:
        raise DecodeError(f"Invalid binding record: {e}") from e


def shape_from_init(init: ShapeInit, seq: int, index: int,
                    catalog: Optional[ComponentCatalog] = None) -> Shape:
    """Build a new shape from creation arguments, applying kind defaults."""
    catalog = catalog or _BUILTIN_CATALOG
    spec = catalog.spec_for(init.type)
    props: dict[str, Any] = dict(spec.properties)
    props.update(init.properties)
    if init.w is not None:
        props["w"] = init.w
    if init.h is not None:
        props["h"] = init.h
    if init.label is not None:
        props["text" if init.type == ARROW_TYPE else "label"] = init.label
    record = {
        "id": init.id or generate_shape_id(),
        "type": init.type,
        "x": init.x,
        "y": init.y,
        "parentId": init.parent_id or PAGE_ROOT_ID,
        "index": index,
        "meta": {"seq": seq},
        "props": props,
    }
    return shape_from_record(record, catalog)


# --- Snapshots ---

def empty_snapshot(page_id: str = PAGE_ROOT_ID) -> dict:
    """A snapshot of an empty canvas."""
    return {
        "schema": {"schemaVersion": SNAPSHOT_SCHEMA_VERSION},
        "pageId": page_id,
        "store": {},
    }


def build_snapshot(page_id: str, shapes: list[Shape], bindings: list[ArrowBinding]) -> dict:
    """Serialize shapes and bindings into a snapshot dict."""
    store: dict[str, dict] = {}
    for shape in shapes:
        store[shape.id] = shape.to_record()
    for binding in bindings:
        store[binding.id] = binding.to_record()
    return {
        "schema": {"schemaVersion": SNAPSHOT_SCHEMA_VERSION},
        "pageId": page_id,
        "store": store,
    }


def parse_snapshot(
    snapshot: Any,
    catalog: Optional[ComponentCatalog] = None,
) -> tuple[str, list[Shape], list[ArrowBinding]]:
    """
    Validate and parse a snapshot dict into (page_id, shapes, bindings).

    Raises DecodeError if the snapshot structure is unusable. Nothing is
    partially applied by callers: parse first, then replace.
    """
    if not isinstance(snapshot, dict):
        raise DecodeError("Snapshot must be an object")
    store = snapshot.get("store")
    if not isinstance(store, dict):
        raise DecodeError("Snapshot is missing its 'store' object")
    schema = snapshot.get("schema")
    if isinstance(schema, dict):
        version = schema.get("schemaVersion")
        if isinstance(version, int) and version > SNAPSHOT_SCHEMA_VERSION:
            raise DecodeError(f"Unsupported snapshot schema version: {version}")

    page_id = _string(snapshot.get("pageId"), PAGE_ROOT_ID)
    shapes: list[Shape] = []
    bindings: list[ArrowBinding] = []
    for record_id, record in store.items():
        if not isinstance(record, dict):
            raise DecodeError(f"Record {record_id!r} must be an object")
        type_name = record.get("typeName", "shape")
        if type_name == "shape":
            shapes.append(shape_from_record(record, catalog))
        elif type_name == "binding":
            bindings.append(binding_from_record(record))
        else:
            raise DecodeError(f"Unknown record type: {type_name!r}")
    return page_id, shapes, bindings


# --- Layout output ---

class PositionUpdate(BaseModel):
    """A computed position (and, for grown containers, size) for one shape."""
    id: str
    x: float
    y: float
    w: Optional[float] = None
    h: Optional[float] = None

    def changes(self) -> dict:
        """Field changes to apply to the shape in the store."""
        result = {"x": self.x, "y": self.y}
        if self.w is not None:
            result["w"] = self.w
        if self.h is not None:
            result["h"] = self.h
        return result


# --- Canonical export model ---

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CanvasItem(_CamelModel):
    """Format-agnostic projection of a box shape."""
    id: str
    key: str
    label: str
    x: float
    y: float
    properties: dict[str, Any] = Field(default_factory=dict)
    is_bounding_box: bool = False
    parent_id: Optional[str] = None
    children: list[str] = Field(default_factory=list)

    @property
    def component_kind(self) -> str:
        kind = self.properties.get("componentKind")
        if isinstance(kind, str) and kind:
            return kind
        suffix = f"-{self.id}"
        return self.key[:-len(suffix)] if self.key.endswith(suffix) else self.key


class Connection(_CamelModel):
    """A directed connection derived from a bound arrow."""
    id: str
    from_shape_id: str
    to_shape_id: str
    label: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)


class ExportMetadata(_CamelModel):
    exported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    format: str = "json"
    version: str = EXPORT_VERSION


class CanonicalDiagram(_CamelModel):
    """
    The serializable, host-independent diagram.
    This is what generators consume and what the json format round-trips.
    """
    items: list[CanvasItem] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    metadata: ExportMetadata = Field(default_factory=ExportMetadata)

    def to_json_dict(self) -> dict:
        """Convert to a JSON-serializable dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "CanonicalDiagram":
        return cls.model_validate_json(text)

    def get_item(self, item_id: str) -> Optional[CanvasItem]:
        """Get an item by ID (O(n))."""
        for item in self.items:
            if item.id == item_id:
                return item
        return None
