"""
Core journey execution components.
"""

from .conditions import evaluate
from .validator import validate_journey, validate_patient_context
from .node_executor import NodeExecutor, MessageSender
from .engine import JourneyEngine
from .service import JourneyService

__all__ = [
    "evaluate",
    "validate_journey",
    "validate_patient_context",
    "NodeExecutor",
    "MessageSender",
    "JourneyEngine",
    "JourneyService",
]
