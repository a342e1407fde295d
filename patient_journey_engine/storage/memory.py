"""
In-memory stores for tests and the simulator.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from ..models import (
    Journey,
    JourneyDraft,
    JourneyRun,
    PatientContext,
    RunStatus,
    RunUpdate,
)
from ..utils.errors import RunNotFoundError
from .base import JourneyStore, RunStore


class InMemoryJourneyStore(JourneyStore):
    """Journey store backed by a dict. Lost when the process exits."""

    def __init__(self):
        self._journeys: Dict[str, Journey] = {}

    async def check(self) -> None:
        return None

    async def create(self, draft: JourneyDraft) -> Journey:
        journey = Journey(id=str(uuid.uuid4()), **draft.model_dump())
        self._journeys[journey.id] = journey
        return journey

    async def get(self, journey_id: str) -> Optional[Journey]:
        return self._journeys.get(journey_id)

    async def list_all(self) -> List[Journey]:
        return list(reversed(list(self._journeys.values())))


class InMemoryRunStore(RunStore):
    """
    Run store backed by a dict.

    Every method completes without suspending, so each patch is atomic with
    respect to other tasks on the event loop.
    """

    def __init__(self):
        self._runs: Dict[str, JourneyRun] = {}

    async def check(self) -> None:
        return None

    async def create(
        self,
        journey_id: str,
        patient_context: PatientContext,
        current_node_id: str
    ) -> JourneyRun:
        now = datetime.now()
        run = JourneyRun(
            id=str(uuid.uuid4()),
            journey_id=journey_id,
            patient_context=patient_context,
            status=RunStatus.IN_PROGRESS,
            current_node_id=current_node_id,
            created_at=now,
            updated_at=now,
        )
        self._runs[run.id] = run
        return run.model_copy()

    async def get(self, run_id: str) -> Optional[JourneyRun]:
        run = self._runs.get(run_id)
        return run.model_copy() if run else None

    async def update(
        self,
        run_id: str,
        changes: RunUpdate,
        if_status: Optional[RunStatus] = None
    ) -> Optional[JourneyRun]:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if if_status is not None and run.status != if_status:
            return None

        updated = run.model_copy(update={**changes.changes(), "updated_at": datetime.now()})
        self._runs[run_id] = updated
        return updated.model_copy()

    async def list_by_status(self, status: RunStatus) -> List[JourneyRun]:
        return [run.model_copy() for run in self._runs.values() if run.status == status]
