"""
Diagram validation - Check canonical diagrams for structural issues.

Used by the API, the CLI and tests. Validation never raises; it reports.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CanonicalDiagram


# Narrowest VPC that still reads as a boundary on the canvas
MIN_VPC_WIDTH = 300


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a diagram."""
    severity: IssueSeverity
    message: str
    item_id: str | None = None
    connection_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.item_id:
            result["itemId"] = self.item_id
        if self.connection_id:
            result["connectionId"] = self.connection_id
        return result


def validate_diagram(diagram: "CanonicalDiagram") -> list[ValidationIssue]:
    """
    Validate a canonical diagram and return a list of issues.

    Checks for:
    - Empty diagram - INFO
    - Missing labels - WARNING
    - Parent references to unknown items, children lists that disagree
      with parentId, parent cycles - ERROR
    - Connections to unknown items - ERROR
    - Self connections, duplicate connections - WARNING
    - VPCs narrower than MIN_VPC_WIDTH - WARNING

    Args:
        diagram: The diagram to validate

    Returns:
        List of ValidationIssue objects
    """
    issues: list[ValidationIssue] = []

    items = diagram.items
    connections = diagram.connections

    if not items:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Diagram has no items"
        ))
        return issues

    index = {item.id: item for item in items}

    for item in items:
        if not item.label or not item.label.strip():
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Item has an empty label",
                item_id=item.id
            ))

    # Parent / children consistency
    for item in items:
        if item.parent_id is not None:
            parent = index.get(item.parent_id)
            if parent is None:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Item references non-existent parent: {item.parent_id}",
                    item_id=item.id
                ))
            elif item.id not in parent.children:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Parent {parent.id} does not list this item as a child",
                    item_id=item.id
                ))
        for child_id in item.children:
            child = index.get(child_id)
            if child is None or child.parent_id != item.id:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Child {child_id} does not point back to this item",
                    item_id=item.id
                ))

    # Cycles in the parent chain
    reported: set[str] = set()
    for item in items:
        seen = [item.id]
        current = item.parent_id
        while current is not None and current in index:
            if current in seen:
                cycle = seen[seen.index(current):]
                if not reported.intersection(cycle):
                    reported.update(cycle)
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        message=f"Parent cycle: {' -> '.join(cycle + [current])}",
                        item_id=current
                    ))
                break
            seen.append(current)
            current = index[current].parent_id

    for connection in connections:
        if connection.from_shape_id not in index:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Connection references non-existent source: {connection.from_shape_id}",
                connection_id=connection.id
            ))
        if connection.to_shape_id not in index:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Connection references non-existent target: {connection.to_shape_id}",
                connection_id=connection.id
            ))

    for connection in connections:
        if connection.from_shape_id == connection.to_shape_id:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Self-referencing connection (item points to itself)",
                connection_id=connection.id,
                item_id=connection.from_shape_id
            ))

    seen_pairs: set[tuple[str, str]] = set()
    for connection in connections:
        pair = (connection.from_shape_id, connection.to_shape_id)
        if pair in seen_pairs:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Duplicate connection from {pair[0]} to {pair[1]}",
                connection_id=connection.id
            ))
        else:
            seen_pairs.add(pair)

    for item in items:
        if item.component_kind == "vpc":
            width = item.properties.get("w")
            if isinstance(width, (int, float)) and width < MIN_VPC_WIDTH:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"VPC is narrower than {MIN_VPC_WIDTH}px ({width:g}px)",
                    item_id=item.id
                ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Args:
        issues: List of validation issues

    Returns:
        Dictionary with counts by severity
    """
    errors = len([i for i in issues if i.severity == IssueSeverity.ERROR])
    return {
        "total": len(issues),
        "errors": errors,
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": errors == 0
    }
