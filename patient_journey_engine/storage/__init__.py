"""
Journey and run persistence.
"""

from pathlib import Path
from typing import Tuple

from ..config import Settings
from .base import JourneyStore, RunStore
from .memory import InMemoryJourneyStore, InMemoryRunStore
from .file_store import FileJourneyStore, FileRunStore


def create_stores(settings: Settings) -> Tuple[JourneyStore, RunStore]:
    """
    Build the journey and run stores selected by ``settings.store_backend``.

    Returns:
        (journey_store, run_store)
    """
    if settings.store_backend == "memory":
        return InMemoryJourneyStore(), InMemoryRunStore()

    data_dir = Path(settings.data_dir)
    return FileJourneyStore(data_dir / "journeys"), FileRunStore(data_dir / "runs")


__all__ = [
    "JourneyStore",
    "RunStore",
    "InMemoryJourneyStore",
    "InMemoryRunStore",
    "FileJourneyStore",
    "FileRunStore",
    "create_stores",
]
