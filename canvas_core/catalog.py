"""
Component catalog - kinds of infrastructure components and their defaults.

The catalog answers two questions:
- What does a drag-and-drop payload (a catalog id) create? (kind, size, label)
- Which kinds are containment boundaries, and how big are they by default?

A catalog is an explicit value passed to whoever needs it; there is no
global registry to mutate.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional


class ComponentKind(str, Enum):
    """Component kinds known to the canvas."""
    VPC = "vpc"
    SUBNET = "subnet"
    AVAILABILITY_ZONE = "availability-zone"
    COMPUTE = "compute"
    DATABASE = "database"
    STORAGE = "storage"
    USER = "user"
    EXTERNAL_SYSTEM = "external-system"


# Minimum box size; large enough to host the icon and its label
MIN_WIDTH = 40.0
MIN_HEIGHT = 40.0


@dataclass(frozen=True)
class ComponentSpec:
    """Defaults applied when a component of this kind is created."""
    id: str
    label: str
    is_container: bool = False
    width: float = 120
    height: float = 80
    color: str = "blue"
    opacity: Optional[float] = None
    properties: dict[str, Any] = field(default_factory=dict)


DEFAULT_COMPONENTS: tuple[ComponentSpec, ...] = (
    ComponentSpec(
        id=ComponentKind.VPC.value, label="VPC", is_container=True,
        width=300, height=200, color="blue", opacity=0.3,
        properties={"cidrBlock": "10.0.0.0/16"},
    ),
    ComponentSpec(
        id=ComponentKind.SUBNET.value, label="Subnet", is_container=True,
        width=200, height=120, color="green", opacity=0.2,
        properties={"cidrBlock": "10.0.1.0/24"},
    ),
    ComponentSpec(
        id=ComponentKind.AVAILABILITY_ZONE.value, label="Availability Zone", is_container=True,
        width=250, height=150, color="purple", opacity=0.15,
    ),
    ComponentSpec(
        id=ComponentKind.COMPUTE.value, label="Compute Instance", color="blue",
        properties={"instanceType": "t3.micro"},
    ),
    ComponentSpec(
        id=ComponentKind.DATABASE.value, label="Database", color="green",
        properties={"engine": "mysql"},
    ),
    ComponentSpec(id=ComponentKind.STORAGE.value, label="Storage Bucket", color="orange"),
    ComponentSpec(id=ComponentKind.USER.value, label="User", color="violet"),
    ComponentSpec(id=ComponentKind.EXTERNAL_SYSTEM.value, label="External System", color="red"),
)

# Used for shapes whose kind is not in the catalog
FALLBACK_COMPONENT = ComponentSpec(id="component", label="Component")


class ComponentCatalog:
    """Lookup of component specs by catalog id."""

    def __init__(self, components: tuple[ComponentSpec, ...] = DEFAULT_COMPONENTS):
        self._components: dict[str, ComponentSpec] = {}
        for spec in components:
            self.register(spec)

    def register(self, spec: ComponentSpec):
        """Add (or replace) a component spec."""
        self._components[spec.id] = spec

    def get(self, component_id: str) -> Optional[ComponentSpec]:
        """Get a spec by id, or None if the id is unknown."""
        return self._components.get(component_id)

    def spec_for(self, component_id: str) -> ComponentSpec:
        """Get a spec by id, falling back to a generic leaf component."""
        return self._components.get(component_id, FALLBACK_COMPONENT)

    def is_container(self, component_id: str) -> bool:
        return self.spec_for(component_id).is_container

    def __contains__(self, component_id: object) -> bool:
        return component_id in self._components

    def __iter__(self) -> Iterator[ComponentSpec]:
        return iter(self._components.values())

    def __len__(self) -> int:
        return len(self._components)
