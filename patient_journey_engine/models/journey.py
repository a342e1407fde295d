"""
Journey graph models.

A journey is an immutable directed graph of typed nodes. Nodes are a closed
union over ``type``: each variant carries only its own fields.
"""

import math

from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum


class NodeType(str, Enum):
    """Kinds of journey nodes."""

    MESSAGE = "MESSAGE"
    DELAY = "DELAY"
    CONDITIONAL = "CONDITIONAL"


class ConditionOperator(str, Enum):
    """Comparison operators supported by conditional nodes."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"


class Condition(BaseModel):
    """Comparison of one patient-context field against a literal."""

    field: str = Field(description="Patient context key to look up")
    operator: ConditionOperator = Field(description="Comparison operator")
    value: Any = Field(default=None, description="Literal scalar, or a list for in/nin")


class MessageNode(BaseModel):
    """Sends a message to the patient, then moves on."""

    id: str
    type: Literal["MESSAGE"] = "MESSAGE"
    message: str = Field(min_length=1)
    next_node_id: Optional[str] = None


class DelayNode(BaseModel):
    """Waits for a fixed duration, then moves on."""

    id: str
    type: Literal["DELAY"] = "DELAY"
    duration_seconds: Union[int, float]
    next_node_id: Optional[str] = None

    @field_validator("duration_seconds")
    @classmethod
    def validate_duration(cls, v: Union[int, float]) -> Union[int, float]:
        """Reject negative and non-finite durations."""
        if not math.isfinite(v):
            raise ValueError("duration_seconds must be a finite number")
        if v < 0:
            raise ValueError("duration_seconds must be non-negative")
        return v


class ConditionalNode(BaseModel):
    """Branches on a condition evaluated against the patient context."""

    id: str
    type: Literal["CONDITIONAL"] = "CONDITIONAL"
    condition: Condition
    on_true_next_node_id: Optional[str] = None
    on_false_next_node_id: Optional[str] = None


JourneyNode = Annotated[
    Union[MessageNode, DelayNode, ConditionalNode],
    Field(discriminator="type"),
]


class JourneyDraft(BaseModel):
    """A journey definition as submitted, before it has an identifier."""

    name: str = Field(min_length=1, description="Human-readable journey name")
    start_node_id: str = Field(min_length=1, description="Id of the first node to execute")
    nodes: List[JourneyNode] = Field(min_length=1, description="Ordered journey nodes")


class Journey(JourneyDraft):
    """A persisted journey. Never mutated after creation."""

    id: str = Field(description="Opaque journey identifier")
    created_at: datetime = Field(default_factory=datetime.now)

    def get_node(self, node_id: str) -> Optional[Union[MessageNode, DelayNode, ConditionalNode]]:
        """Get a node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_public_dict(self) -> Dict[str, Any]:
        """Journey as returned to API callers."""
        return self.model_dump(mode="json", exclude={"created_at"})

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "Journey":
        """Create from a storage dictionary."""
        return cls.model_validate(data)
