"""
Journey service: the caller-facing operations behind the API and CLI.
"""

from typing import Any, List
import logging

import pydantic

from ..models import Journey, JourneyDraft, JourneyRun, PatientContext, RunStatus
from ..storage import JourneyStore, RunStore
from ..utils.errors import JourneyNotFoundError, ValidationError
from .engine import JourneyEngine
from .validator import validate_journey, validate_patient_context

logger = logging.getLogger(__name__)


class JourneyService:
    """
    Validates input, persists journeys and hands runs to the engine.

    Invalid input is rejected before anything is persisted.
    """

    def __init__(self, journey_store: JourneyStore, run_store: RunStore, engine: JourneyEngine):
        self.journey_store = journey_store
        self.run_store = run_store
        self.engine = engine

    async def submit_journey(self, draft: Any) -> Journey:
        """
        Validate and store a journey definition.

        Raises:
            ValidationError: If the draft is not a well-formed graph
        """
        error = validate_journey(draft)
        if error:
            raise ValidationError(error)

        try:
            journey_draft = JourneyDraft.model_validate(draft)
        except pydantic.ValidationError as e:
            raise ValidationError(str(e)) from e

        journey = await self.journey_store.create(journey_draft)
        logger.info(f"Journey submitted: {journey.id} ({len(journey.nodes)} nodes)")
        return journey

    async def get_journey(self, journey_id: str) -> Journey:
        """
        Raises:
            JourneyNotFoundError: If the journey does not exist
        """
        journey = await self.journey_store.get(journey_id)
        if journey is None:
            raise JourneyNotFoundError(journey_id)
        return journey

    async def list_journeys(self) -> List[Journey]:
        return await self.journey_store.list_all()

    async def trigger(self, journey_id: str, patient_context: Any) -> str:
        """
        Start a run of a journey for a patient.

        Returns:
            Id of the run, which keeps executing in the background

        Raises:
            ValidationError: If the patient context is malformed
            JourneyNotFoundError: If the journey does not exist
        """
        error = validate_patient_context(patient_context)
        if error:
            raise ValidationError(error)

        try:
            context = PatientContext.model_validate(patient_context)
        except pydantic.ValidationError as e:
            raise ValidationError(str(e)) from e

        return await self.engine.start(journey_id, context)

    async def get_run(self, run_id: str) -> JourneyRun:
        return await self.engine.get_run(run_id)

    async def list_runs(self, status: RunStatus = RunStatus.IN_PROGRESS) -> List[JourneyRun]:
        return await self.engine.list_runs(status)

    async def cancel_run(self, run_id: str) -> JourneyRun:
        return await self.engine.cancel(run_id)
