"""
Structural validation for journey drafts and patient contexts.

Both validators work on raw decoded JSON and return the first descriptive
error found, or None when the input is well-formed. Reachability and
termination are runtime concerns: unreachable nodes and cycles are accepted.
"""

import math
from typing import Any, List, Mapping, Optional

from ..models import ConditionOperator, NodeType

NODE_TYPES = [t.value for t in NodeType]
OPERATORS = [op.value for op in ConditionOperator]
LANGUAGES = ["en", "es"]
CONDITIONS = ["liver_replacement", "knee_replacement"]


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _has_non_finite(value: Any) -> bool:
    """True if a NaN or infinity appears anywhere inside a decoded JSON value."""
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, Mapping):
        return any(_has_non_finite(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(_has_non_finite(v) for v in value)
    return False


def validate_journey(draft: Any) -> Optional[str]:
    """
    Check that a journey draft is a well-formed node graph.

    Checks run in order and stop at the first failure: name, start node id,
    non-empty node list, start node resolution, node ids and types, per-type
    fields, then outgoing references.

    Args:
        draft: Decoded journey definition

    Returns:
        Error message, or None if the draft is valid
    """
    if not isinstance(draft, Mapping):
        return "Journey must be an object"

    if not _non_empty_string(draft.get("name")):
        return "Journey name is required and must be a string"

    start_node_id = draft.get("start_node_id")
    if not _non_empty_string(start_node_id):
        return "Journey start_node_id is required and must be a string"

    nodes = draft.get("nodes")
    if not isinstance(nodes, list) or len(nodes) == 0:
        return "Journey must have at least one node"

    node_ids = {
        node["id"] for node in nodes
        if isinstance(node, Mapping) and isinstance(node.get("id"), str)
    }
    if start_node_id not in node_ids:
        return "start_node_id must reference an existing node"

    seen = set()
    for node in nodes:
        if not isinstance(node, Mapping) or not _non_empty_string(node.get("id")):
            return "Node id is required and must be a string"
        if node.get("type") not in NODE_TYPES:
            return f"Node type must be one of: {', '.join(NODE_TYPES)}"
        if node["id"] in seen:
            return f"Duplicate node id: {node['id']}"
        seen.add(node["id"])

    for node in nodes:
        error = _validate_node_fields(node)
        if error:
            return error

    for node in nodes:
        error = _validate_references(node, node_ids)
        if error:
            return error

    return None


def _validate_node_fields(node: Mapping[str, Any]) -> Optional[str]:
    node_type = node["type"]

    if node_type == NodeType.MESSAGE.value:
        if not _non_empty_string(node.get("message")):
            return f"MESSAGE node {node['id']} must have a message string"

    elif node_type == NodeType.DELAY.value:
        duration = node.get("duration_seconds")
        if not _is_number(duration) or duration < 0:
            return f"DELAY node {node['id']} must have a non-negative duration_seconds number"

    elif node_type == NodeType.CONDITIONAL.value:
        condition = node.get("condition")
        if not isinstance(condition, Mapping):
            return f"CONDITIONAL node {node['id']} must have a condition object"
        if not _non_empty_string(condition.get("field")):
            return f"CONDITIONAL node {node['id']} condition must have a field string"
        if condition.get("operator") not in OPERATORS:
            return (
                f"CONDITIONAL node {node['id']} condition must have a valid operator "
                f"({', '.join(OPERATORS)})"
            )
        if _has_non_finite(condition.get("value")):
            return f"CONDITIONAL node {node['id']} condition value must not contain NaN or infinity"

    return None


def _outgoing_fields(node_type: str) -> List[str]:
    if node_type == NodeType.CONDITIONAL.value:
        return ["on_true_next_node_id", "on_false_next_node_id"]
    return ["next_node_id"]


def _validate_references(node: Mapping[str, Any], node_ids: set) -> Optional[str]:
    for field_name in _outgoing_fields(node["type"]):
        target = node.get(field_name)
        if target is None:
            continue
        if not isinstance(target, str) or target not in node_ids:
            return f"{node['type']} node {node['id']} references non-existent {field_name}: {target}"
    return None


def validate_patient_context(context: Any) -> Optional[str]:
    """
    Check the shape of a patient context supplied at trigger time.

    Additional keys beyond the required ones are allowed and kept.

    Returns:
        Error message, or None if the context is valid
    """
    if not isinstance(context, Mapping):
        return "Patient context must be an object"

    if not _non_empty_string(context.get("id")):
        return "Patient id is required and must be a string"

    age = context.get("age")
    if not _is_number(age) or age < 0:
        return "Patient age is required and must be a non-negative number"

    if context.get("language") not in LANGUAGES:
        return 'Patient language is required and must be either "en" or "es"'

    if context.get("condition") not in CONDITIONS:
        return (
            'Patient condition is required and must be either '
            '"liver_replacement" or "knee_replacement"'
        )

    if _has_non_finite(context):
        return "Patient context values must not contain NaN or infinity"

    return None
