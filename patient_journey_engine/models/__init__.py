"""
Data models for the Patient Journey Engine.
"""

from .journey import (
    NodeType,
    ConditionOperator,
    Condition,
    MessageNode,
    DelayNode,
    ConditionalNode,
    JourneyNode,
    JourneyDraft,
    Journey,
)
from .run import (
    RunStatus,
    PatientContext,
    JourneyRun,
    RunUpdate,
)

__all__ = [
    "NodeType",
    "ConditionOperator",
    "Condition",
    "MessageNode",
    "DelayNode",
    "ConditionalNode",
    "JourneyNode",
    "JourneyDraft",
    "Journey",
    "RunStatus",
    "PatientContext",
    "JourneyRun",
    "RunUpdate",
]
