"""
Format generators - CanonicalDiagram to text.

Each generator is a pure function ``(CanonicalDiagram) -> str``. Containers
become structural scopes where the target supports nesting; leaves become
typed nodes. Generators are looked up by format id in a FormatRegistry,
which is an explicit value built at construction time.

Formats:
- mermaid-c4: Mermaid C4Context with nested boundaries
- mermaid-architecture: Mermaid architecture-beta with groups
- mermaid-flowchart: flat Mermaid flowchart (compatibility fallback)
- json: the canonical diagram itself (the only lossless format)
- terraform: illustrative AWS resource skeleton, not deployable as-is
- graphviz: DOT digraph with cluster subgraphs
- plantuml: C4-PlantUML context diagram
- drawio: draw.io mxfile with AWS shapes
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterator, Optional
from xml.dom import minidom
from xml.etree.ElementTree import Element, SubElement, tostring

from .errors import GenerationError, UnsupportedFormatError
from .logging import get_logger
from .models import CanonicalDiagram, CanvasItem

logger = get_logger("generators")

Generator = Callable[[CanonicalDiagram], str]


@dataclass(frozen=True)
class ExportFormat:
    """A registered output format."""
    id: str
    name: str
    extension: str
    description: str
    generator: Generator

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "extension": self.extension,
            "description": self.description,
        }


@dataclass(frozen=True)
class ExportResult:
    """Generated text and the file extension it should be saved with."""
    content: str
    extension: str


class FormatRegistry:
    """Format id -> ExportFormat, in registration order."""

    def __init__(self, formats: Optional[list[ExportFormat]] = None):
        self._formats: dict[str, ExportFormat] = {}
        for fmt in formats or []:
            self.register(fmt)

    def register(self, fmt: ExportFormat):
        self._formats[fmt.id] = fmt

    def get(self, format_id: str) -> ExportFormat:
        """Get a format by id. Raises UnsupportedFormatError for unknown ids."""
        fmt = self._formats.get(format_id)
        if fmt is None:
            raise UnsupportedFormatError(format_id)
        return fmt

    @property
    def ids(self) -> list[str]:
        return list(self._formats)

    def __contains__(self, format_id: object) -> bool:
        return format_id in self._formats

    def __iter__(self) -> Iterator[ExportFormat]:
        return iter(self._formats.values())


def export_diagram(diagram: CanonicalDiagram, format_id: str, registry: FormatRegistry) -> ExportResult:
    """
    Run the generator registered for format_id.

    Raises:
        UnsupportedFormatError: Unknown format id
        GenerationError: The generator raised
    """
    fmt = registry.get(format_id)
    try:
        content = fmt.generator(diagram)
    except Exception as e:
        logger.error("Generator %s failed", format_id, exc_info=True)
        raise GenerationError(format_id, str(e)) from e
    logger.info("Exported %d items, %d connections as %s",
                len(diagram.items), len(diagram.connections), format_id)
    return ExportResult(content=content, extension=fmt.extension)


# --- Helpers ---

def clean_id(value: str) -> str:
    """Make an id safe for diagram languages (letters, digits, underscore)."""
    return re.sub(r"[^a-zA-Z0-9_]", "_", value)


def _quote(text: str) -> str:
    """Text safe inside a double-quoted string."""
    return text.replace("\\", "\\\\").replace('"', "'").replace("\n", " ")


def _bracket_text(text: str) -> str:
    """Text safe inside [...] labels of architecture diagrams."""
    return re.sub(r"[\[\]()\n]", " ", text).strip() or "item"


def _title(kind: str) -> str:
    return " ".join(part.capitalize() for part in kind.split("-"))


def _roots(diagram: CanonicalDiagram) -> list[CanvasItem]:
    return [item for item in diagram.items if item.parent_id is None]


def _children(diagram: CanonicalDiagram, item: CanvasItem) -> list[CanvasItem]:
    index = {i.id: i for i in diagram.items}
    return [index[child_id] for child_id in item.children if child_id in index]


# --- Mermaid C4 ---

C4_BOUNDARY_TYPES = {
    "vpc": "Enterprise_Boundary",
    "subnet": "System_Boundary",
}

C4_ELEMENT_TYPES = {
    "compute": "System",
    "database": "SystemDb",
    "storage": "System",
    "user": "Person",
    "external-system": "System_Ext",
}


def _c4_description(item: CanvasItem) -> str:
    description = _title(item.component_kind)
    instance_type = item.properties.get("instanceType")
    if instance_type:
        description += f" ({instance_type})"
    return description


def _render_c4(diagram: CanonicalDiagram, items: list[CanvasItem], depth: int,
               visited: set[str]) -> list[str]:
    lines = []
    indent = "    " * depth
    for item in items:
        if item.id in visited:
            continue
        visited.add(item.id)
        alias = clean_id(item.id)
        kind = item.component_kind
        if item.is_bounding_box:
            boundary = C4_BOUNDARY_TYPES.get(kind, "Boundary")
            lines.append(f'{indent}{boundary}({alias}, "{_quote(item.label)}", "{kind.upper()}") {{')
            lines.extend(_render_c4(diagram, _children(diagram, item), depth + 1, visited))
            lines.append(f"{indent}}}")
        else:
            element = C4_ELEMENT_TYPES.get(kind, "System")
            lines.append(f'{indent}{element}({alias}, "{_quote(item.label)}", "{_c4_description(item)}")')
    return lines


def generate_mermaid_c4(diagram: CanonicalDiagram) -> str:
    lines = ["C4Context"]
    lines.extend(_render_c4(diagram, _roots(diagram), 1, set()))

    if diagram.connections:
        lines.append("")
        lines.append("    %% Relationships")
        for connection in diagram.connections:
            label = _quote(connection.label) if connection.label else "Uses"
            lines.append(
                f'    Rel({clean_id(connection.from_shape_id)}, '
                f'{clean_id(connection.to_shape_id)}, "{label}")'
            )

    lines.append("")
    lines.append('    UpdateLayoutConfig($c4ShapeInRow="3", $c4BoundaryInRow="1")')
    return "\n".join(lines) + "\n"


# --- Mermaid architecture ---

ARCHITECTURE_ICONS = {
    "compute": "server",
    "database": "database",
    "storage": "disk",
    "user": "internet",
    "external-system": "cloud",
}


def _containers_outside_in(diagram: CanonicalDiagram) -> list[CanvasItem]:
    """Containers in containment-tree pre-order (every parent before its children)."""
    ordered: list[CanvasItem] = []
    visited: set[str] = set()

    def visit(items: list[CanvasItem]):
        for item in items:
            if item.id in visited or not item.is_bounding_box:
                continue
            visited.add(item.id)
            ordered.append(item)
            visit(_children(diagram, item))

    visit(_roots(diagram))
    # Unreachable containers (broken parent chains) keep item order at the end
    visit([item for item in diagram.items if item.id not in visited])
    return ordered


def generate_mermaid_architecture(diagram: CanonicalDiagram) -> str:
    lines = ["architecture-beta"]

    containers = _containers_outside_in(diagram)
    resources = [item for item in diagram.items if not item.is_bounding_box]

    # A group must be declared before anything placed "in" it
    for container in containers:
        scope = f" in {clean_id(container.parent_id)}" if container.parent_id else ""
        lines.append(f"    group {clean_id(container.id)}(cloud)[{_bracket_text(container.label)}]{scope}")
    if containers:
        lines.append("")

    for resource in resources:
        icon = ARCHITECTURE_ICONS.get(resource.component_kind, "server")
        scope = f" in {clean_id(resource.parent_id)}" if resource.parent_id else ""
        lines.append(f"    service {clean_id(resource.id)}({icon})[{_bracket_text(resource.label)}]{scope}")

    if diagram.connections:
        lines.append("")
        for connection in diagram.connections:
            lines.append(
                f"    {clean_id(connection.from_shape_id)}:R --> L:{clean_id(connection.to_shape_id)}"
            )

    return "\n".join(lines) + "\n"


# --- Mermaid flowchart ---

def generate_mermaid_flowchart(diagram: CanonicalDiagram) -> str:
    lines = ["flowchart TD"]

    for item in diagram.items:
        label = _quote(item.label)
        if item.is_bounding_box:
            lines.append(f'    {clean_id(item.id)}["{label}"]')
        else:
            lines.append(f'    {clean_id(item.id)}("{label}")')

    if diagram.connections:
        lines.append("")
        for connection in diagram.connections:
            source = clean_id(connection.from_shape_id)
            target = clean_id(connection.to_shape_id)
            if connection.label:
                lines.append(f'    {source} -->|"{_quote(connection.label)}"| {target}')
            else:
                lines.append(f"    {source} --> {target}")

    return "\n".join(lines) + "\n"


# --- JSON ---

def generate_json(diagram: CanonicalDiagram) -> str:
    return diagram.to_json(indent=2)


# --- Terraform ---

TERRAFORM_HEADER = """# Generated Terraform configuration
# This is a starting template, not deployable code. Review every resource.

terraform {
  required_providers {
    aws = {
      source  = "hashicorp/aws"
      version = "~> 5.0"
    }
  }
}

provider "aws" {
  region = var.region
}

variable "region" {
  description = "AWS region"
  type        = string
  default     = "us-west-2"
}
"""

TERRAFORM_AMI = """
# Data source for Ubuntu AMI
data "aws_ami" "ubuntu" {
  most_recent = true
  owners      = ["099720109477"] # Canonical

  filter {
    name   = "name"
    values = ["ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"]
  }

  filter {
    name   = "virtualization-type"
    values = ["hvm"]
  }
}
"""

TERRAFORM_DB_PASSWORD = """
variable "db_password" {
  description = "Master password for generated database instances"
  type        = string
  sensitive   = true
}
"""


def _tf_name(item_id: str) -> str:
    name = clean_id(item_id).lower()
    return name if name[:1].isalpha() or name[:1] == "_" else f"r_{name}"


def _nearest_ancestor(diagram: CanonicalDiagram, item: CanvasItem, kind: str) -> Optional[CanvasItem]:
    index = {i.id: i for i in diagram.items}
    seen: set[str] = set()
    parent_id = item.parent_id
    while parent_id and parent_id in index and parent_id not in seen:
        seen.add(parent_id)
        parent = index[parent_id]
        if parent.component_kind == kind:
            return parent
        parent_id = parent.parent_id
    return None


def _tf_tags(item: CanvasItem) -> str:
    return f'  tags = {{\n    Name = "{_quote(item.label)}"\n  }}\n'


def generate_terraform(diagram: CanonicalDiagram) -> str:
    blocks = [TERRAFORM_HEADER]
    needs_ami = False
    needs_db_password = False

    for item in diagram.items:
        kind = item.component_kind
        name = _tf_name(item.id)
        props = item.properties

        if kind == "vpc":
            blocks.append(
                f'\nresource "aws_vpc" "{name}" {{\n'
                f'  cidr_block           = "{props.get("cidrBlock") or "10.0.0.0/16"}"\n'
                f"  enable_dns_hostnames = true\n"
                f"  enable_dns_support   = true\n\n"
                f"{_tf_tags(item)}}}\n"
            )
        elif kind == "subnet":
            vpc = _nearest_ancestor(diagram, item, "vpc")
            vpc_ref = f"aws_vpc.{_tf_name(vpc.id)}.id" if vpc else "aws_vpc.main_vpc.id"
            zone = _nearest_ancestor(diagram, item, "availability-zone")
            zone_line = f'  availability_zone = "{_quote(zone.label)}"\n' if zone else ""
            blocks.append(
                f'\nresource "aws_subnet" "{name}" {{\n'
                f"  vpc_id     = {vpc_ref}\n"
                f'  cidr_block = "{props.get("cidrBlock") or "10.0.1.0/24"}"\n'
                f"{zone_line}\n"
                f"{_tf_tags(item)}}}\n"
            )
        elif kind == "compute":
            needs_ami = True
            subnet = _nearest_ancestor(diagram, item, "subnet")
            subnet_line = f"  subnet_id     = aws_subnet.{_tf_name(subnet.id)}.id\n" if subnet else ""
            blocks.append(
                f'\nresource "aws_instance" "{name}" {{\n'
                f"  ami           = data.aws_ami.ubuntu.id\n"
                f'  instance_type = "{props.get("instanceType") or "t3.micro"}"\n'
                f"{subnet_line}\n"
                f"{_tf_tags(item)}}}\n"
            )
        elif kind == "database":
            needs_db_password = True
            identifier = re.sub(r"[^a-z0-9-]", "-", item.label.lower()).strip("-") or name
            blocks.append(
                f'\nresource "aws_db_instance" "{name}" {{\n'
                f'  identifier        = "{identifier}"\n'
                f'  engine            = "{props.get("engine") or "mysql"}"\n'
                f'  instance_class    = "db.t3.micro"\n'
                f"  allocated_storage = 20\n\n"
                f'  db_name  = "database"\n'
                f'  username = "admin"\n'
                f"  password = var.db_password\n\n"
                f"  skip_final_snapshot = true\n\n"
                f"{_tf_tags(item)}}}\n"
            )
        elif kind == "storage":
            bucket = re.sub(r"[^a-z0-9-]", "-", item.label.lower()).strip("-") or name
            blocks.append(
                f'\nresource "aws_s3_bucket" "{name}" {{\n'
                f'  bucket_prefix = "{bucket[:37]}"\n\n'
                f"{_tf_tags(item)}}}\n"
            )

    if needs_db_password:
        blocks.append(TERRAFORM_DB_PASSWORD)
    if needs_ami:
        blocks.append(TERRAFORM_AMI)
    return "".join(blocks)


# --- Graphviz ---

def _render_dot(diagram: CanonicalDiagram, items: list[CanvasItem], depth: int,
                visited: set[str]) -> list[str]:
    lines = []
    indent = "    " * depth
    for item in items:
        if item.id in visited:
            continue
        visited.add(item.id)
        if item.is_bounding_box:
            lines.append(f"{indent}subgraph cluster_{clean_id(item.id)} {{")
            lines.append(f'{indent}    label="{_quote(item.label)}";')
            lines.append(f'{indent}    style="dashed";')
            lines.extend(_render_dot(diagram, _children(diagram, item), depth + 1, visited))
            lines.append(f"{indent}}}")
        else:
            lines.append(
                f'{indent}{clean_id(item.id)} [label="{_quote(item.label)}\\n{_title(item.component_kind)}"];'
            )
    return lines


def generate_graphviz(diagram: CanonicalDiagram) -> str:
    lines = [
        "digraph Infrastructure {",
        '    rankdir="TB";',
        '    fontname="Arial";',
        '    node [fontname="Arial", fontsize="10", shape="box", style="rounded,filled", fillcolor="lightblue"];',
        '    edge [fontname="Arial", fontsize="9", color="gray60"];',
        "",
    ]
    lines.extend(_render_dot(diagram, _roots(diagram), 1, set()))

    if diagram.connections:
        lines.append("")
        for connection in diagram.connections:
            attrs = f' [label="{_quote(connection.label)}"]' if connection.label else ""
            lines.append(
                f"    {clean_id(connection.from_shape_id)} -> {clean_id(connection.to_shape_id)}{attrs};"
            )

    lines.append("}")
    return "\n".join(lines) + "\n"


# --- PlantUML ---

def _render_puml(diagram: CanonicalDiagram, items: list[CanvasItem], depth: int,
                 visited: set[str]) -> list[str]:
    lines = []
    indent = "  " * depth
    for item in items:
        if item.id in visited:
            continue
        visited.add(item.id)
        alias = clean_id(item.id)
        kind = item.component_kind
        if item.is_bounding_box:
            boundary = C4_BOUNDARY_TYPES.get(kind, "Boundary")
            lines.append(f'{indent}{boundary}({alias}, "{_quote(item.label)}") {{')
            lines.extend(_render_puml(diagram, _children(diagram, item), depth + 1, visited))
            lines.append(f"{indent}}}")
        else:
            element = C4_ELEMENT_TYPES.get(kind, "System")
            lines.append(f'{indent}{element}({alias}, "{_quote(item.label)}", "{_c4_description(item)}")')
    return lines


def generate_plantuml(diagram: CanonicalDiagram) -> str:
    lines = [
        "@startuml",
        "!include https://raw.githubusercontent.com/plantuml-stdlib/C4-PlantUML/master/C4_Context.puml",
        "",
    ]
    lines.extend(_render_puml(diagram, _roots(diagram), 0, set()))

    if diagram.connections:
        lines.append("")
        for connection in diagram.connections:
            label = _quote(connection.label) if connection.label else "Uses"
            lines.append(
                f'Rel({clean_id(connection.from_shape_id)}, {clean_id(connection.to_shape_id)}, "{label}")'
            )

    lines.append("@enduml")
    return "\n".join(lines) + "\n"


# --- draw.io ---

DRAWIO_CONTAINER_SHAPES = {
    "vpc": "mxgraph.aws4.group;grIcon=mxgraph.aws4.group_vpc",
    "subnet": "mxgraph.aws4.group;grIcon=mxgraph.aws4.group_subnet",
    "availability-zone": "mxgraph.aws4.group;grIcon=mxgraph.aws4.group_availability_zone",
}

DRAWIO_RESOURCE_SHAPES = {
    "compute": "mxgraph.aws4.ec2",
    "database": "mxgraph.aws4.rds",
    "storage": "mxgraph.aws4.s3",
    "load-balancer": "mxgraph.aws4.elastic_load_balancing",
    "api-gateway": "mxgraph.aws4.api_gateway",
    "lambda": "mxgraph.aws4.lambda_function",
    "user": "mxgraph.aws4.user",
    "external-system": "mxgraph.aws4.external_system",
}

DRAWIO_NODE_STYLE = (
    "strokeWidth=2;dashed=0;verticalLabelPosition=bottom;verticalAlign=top;"
    "align=center;html=1;fontSize=12;fontStyle=0;pointerEvents=1;"
)
DRAWIO_EDGE_STYLE = (
    "edgeStyle=orthogonalEdgeStyle;rounded=0;orthogonalLoop=1;jettySize=auto;"
    "html=1;strokeColor=#232F3E;strokeWidth=2;"
)


def _drawio_number(value, default: float) -> str:
    number = value if isinstance(value, (int, float)) and value > 0 else default
    return f"{number:g}"


def _drawio_cell(root: Element, cell_id: str, value: str, style: str, **attrs) -> Element:
    return SubElement(root, "mxCell", attrib={"id": cell_id, "value": value, "style": style,
                                                "parent": "1", **attrs})


def generate_drawio(diagram: CanonicalDiagram) -> str:
    """draw.io mxfile; every item is a top-level vertex at its page position."""
    mxfile = Element("mxfile", attrib={
        "host": "app.diagrams.net",
        "modified": diagram.metadata.exported_at.isoformat(),
        "agent": "infracanvas",
        "type": "device",
    })
    page = SubElement(mxfile, "diagram", name="Infrastructure Diagram", id="infrastructure")
    model = SubElement(page, "mxGraphModel", attrib={
        "grid": "1", "gridSize": "10", "guides": "1", "tooltips": "1", "connect": "1",
        "arrows": "1", "fold": "1", "page": "1", "pageScale": "1",
        "pageWidth": "827", "pageHeight": "1169", "math": "0", "shadow": "0",
    })
    root = SubElement(model, "root")
    SubElement(root, "mxCell", id="0")
    SubElement(root, "mxCell", id="1", parent="0")

    cell_ids: dict[str, str] = {}
    counter = 1
    for item in diagram.items:
        cell_ids[item.id] = f"item_{counter}"
        counter += 1

    # Containers first so resources are drawn on top of them
    ordered = sorted(diagram.items, key=lambda item: not item.is_bounding_box)
    for item in ordered:
        kind = item.component_kind
        if item.is_bounding_box:
            shape = DRAWIO_CONTAINER_SHAPES.get(kind, "rounded=0;container=1")
            style = f"{shape};strokeColor=#FF9900;fillColor=#E8F4FD;{DRAWIO_NODE_STYLE}"
        else:
            shape = DRAWIO_RESOURCE_SHAPES.get(kind, "rounded=1")
            style = f"shape={shape};strokeColor=#232F3E;fillColor=#FFFFFF;{DRAWIO_NODE_STYLE}"
        cell = _drawio_cell(root, cell_ids[item.id], item.label, style, vertex="1")
        SubElement(cell, "mxGeometry", attrib={
            "x": f"{item.x:g}",
            "y": f"{item.y:g}",
            "width": _drawio_number(item.properties.get("w"), 120),
            "height": _drawio_number(item.properties.get("h"), 80),
            "as": "geometry",
        })

    for connection in diagram.connections:
        source = cell_ids.get(connection.from_shape_id)
        target = cell_ids.get(connection.to_shape_id)
        if source is None or target is None:
            continue
        cell = _drawio_cell(root, f"edge_{counter}", connection.label or "", DRAWIO_EDGE_STYLE,
                            edge="1", source=source, target=target)
        counter += 1
        SubElement(cell, "mxGeometry", attrib={"relative": "1", "as": "geometry"})

    raw = tostring(mxfile, encoding="unicode")
    return minidom.parseString(raw).toprettyxml(indent="  ", encoding="UTF-8").decode("utf-8")


def default_registry() -> FormatRegistry:
    """A new registry with every built-in format."""
    return FormatRegistry([
        ExportFormat("mermaid-c4", "Mermaid C4 Context", "mmd",
                     "Mermaid C4 Context diagram format", generate_mermaid_c4),
        ExportFormat("mermaid-architecture", "Mermaid Architecture", "mmd",
                     "Mermaid Architecture diagram format", generate_mermaid_architecture),
        ExportFormat("mermaid-flowchart", "Mermaid Flowchart", "mmd",
                     "Simple Mermaid flowchart diagram", generate_mermaid_flowchart),
        ExportFormat("json", "JSON", "json",
                     "Raw canvas data in JSON format", generate_json),
        ExportFormat("terraform", "Terraform (Basic)", "tf",
                     "Basic Terraform configuration (experimental)", generate_terraform),
        ExportFormat("graphviz", "Graphviz DOT", "dot",
                     "Graphviz digraph with container clusters", generate_graphviz),
        ExportFormat("plantuml", "PlantUML C4", "puml",
                     "C4-PlantUML context diagram", generate_plantuml),
        ExportFormat("drawio", "draw.io", "drawio",
                     "draw.io diagram with AWS shapes", generate_drawio),
    ])
