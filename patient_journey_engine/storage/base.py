"""
Persistence contracts consumed by the engine.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import (
    Journey,
    JourneyDraft,
    JourneyRun,
    PatientContext,
    RunStatus,
    RunUpdate,
)


class JourneyStore(ABC):
    """
    Durable store of journey graphs.

    Journeys are immutable once created: there is no update or delete.
    """

    @abstractmethod
    async def check(self) -> None:
        """
        Verify the backend is reachable.

        Raises:
            StoreUnavailableError: If the backend cannot be used
        """
        pass

    @abstractmethod
    async def create(self, draft: JourneyDraft) -> Journey:
        """
        Persist a validated draft under a new identifier.

        Returns:
            The stored journey
        """
        pass

    @abstractmethod
    async def get(self, journey_id: str) -> Optional[Journey]:
        """Get a journey by id, or None if unknown."""
        pass

    @abstractmethod
    async def list_all(self) -> List[Journey]:
        """List all journeys, most recently created first."""
        pass


class RunStore(ABC):
    """
    Durable store of journey runs.

    Rows are independent. Each create or update is atomic per row, which is
    all concurrent runs need.
    """

    @abstractmethod
    async def check(self) -> None:
        """
        Verify the backend is reachable.

        Raises:
            StoreUnavailableError: If the backend cannot be used
        """
        pass

    @abstractmethod
    async def create(
        self,
        journey_id: str,
        patient_context: PatientContext,
        current_node_id: str
    ) -> JourneyRun:
        """
        Create an in-progress run positioned at ``current_node_id``.

        Returns:
            The stored run
        """
        pass

    @abstractmethod
    async def get(self, run_id: str) -> Optional[JourneyRun]:
        """Get a run by id, or None if unknown."""
        pass

    @abstractmethod
    async def update(
        self,
        run_id: str,
        changes: RunUpdate,
        if_status: Optional[RunStatus] = None
    ) -> Optional[JourneyRun]:
        """
        Apply a partial patch to a run and stamp ``updated_at``.

        Args:
            run_id: Run to patch
            changes: Fields to set; unset fields are left alone
            if_status: Apply only while the run still has this status

        Returns:
            The updated run, or None if ``if_status`` did not match

        Raises:
            RunNotFoundError: If the run does not exist
        """
        pass

    @abstractmethod
    async def list_by_status(self, status: RunStatus) -> List[JourneyRun]:
        """List runs with the given status in creation order."""
        pass
