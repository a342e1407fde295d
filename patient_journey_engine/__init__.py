"""
Patient Journey Engine

Walks patient care journeys (MESSAGE, DELAY and CONDITIONAL nodes) against
a patient's context, persisting progress so runs survive process restarts.
"""

__version__ = "1.0.0"
__author__ = "Patient Journey Engine Team"

from .config import Settings
from .core import JourneyEngine, JourneyService, NodeExecutor
from .models import Journey, JourneyRun, PatientContext, RunStatus

__all__ = [
    "Settings",
    "JourneyEngine",
    "JourneyService",
    "NodeExecutor",
    "Journey",
    "JourneyRun",
    "PatientContext",
    "RunStatus",
    "__version__",
]
