"""
Journey execution engine.

Drives each run node by node from its persisted position to completion or
failure. The run store is the only source of truth: the task and
cancellation tables kept here are volatile and start empty in every process.

Execution guarantees:
- current_node_id is persisted before a node executes, so a restart
  re-executes the in-flight node (at-least-once per node).
- Every engine write is conditional on the run still being in progress,
  which keeps completed and failed runs final.
- Errors inside the loop fail the run; callers only see them by polling.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional
import logging

from ..models import Journey, JourneyRun, PatientContext, RunStatus, RunUpdate
from ..storage import JourneyStore, RunStore
from ..utils.errors import (
    JourneyNotFoundError,
    NodeNotFoundError,
    RunCancelledError,
    RunNotFoundError,
    StepBudgetExceededError,
)
from ..utils.logging_config import ProgressLogger
from .node_executor import NodeExecutor

logger = logging.getLogger(__name__)


class JourneyEngine:
    """
    Starts, resumes, cancels and reports on journey runs.

    Each run executes as its own asyncio task, so many runs interleave in one
    process. Runs share nothing except the two stores.
    """

    def __init__(
        self,
        journey_store: JourneyStore,
        run_store: RunStore,
        executor: Optional[NodeExecutor] = None,
        progress: Optional[ProgressLogger] = None,
        max_steps_per_run: Optional[int] = None
    ):
        """
        Initialize the engine.

        Args:
            journey_store: Journey lookup
            run_store: Run persistence
            executor: Node executor (a logging-only one by default)
            progress: Run event logger
            max_steps_per_run: Fail runs that execute more nodes than this
        """
        self.journey_store = journey_store
        self.run_store = run_store
        self.progress = progress or ProgressLogger()
        self.executor = executor or NodeExecutor(progress=self.progress)
        self.max_steps_per_run = max_steps_per_run

        self.cancel_events: Dict[str, asyncio.Event] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_run_ids(self) -> List[str]:
        """Runs with a live task in this process."""
        return list(self._tasks)

    async def start(self, journey_id: str, patient_context: PatientContext) -> str:
        """
        Create a run and start executing it in the background.

        Args:
            journey_id: Journey to run
            patient_context: Patient the run is for

        Returns:
            Id of the new run

        Raises:
            JourneyNotFoundError: If the journey does not exist
        """
        journey = await self.journey_store.get(journey_id)
        if journey is None:
            raise JourneyNotFoundError(journey_id)

        run = await self.run_store.create(journey.id, patient_context, journey.start_node_id)
        self.progress.run_started(run.id, journey.id, patient_context.id, run.current_node_id)
        self._launch(run, journey)
        return run.id

    async def get_run(self, run_id: str) -> JourneyRun:
        """
        Get the persisted snapshot of a run.

        Raises:
            RunNotFoundError: If the run does not exist
        """
        run = await self.run_store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(self, status: RunStatus = RunStatus.IN_PROGRESS) -> List[JourneyRun]:
        """List runs with a given status in creation order."""
        return await self.run_store.list_by_status(status)

    async def cancel(self, run_id: str) -> JourneyRun:
        """
        Cancel a run wherever it is in its journey.

        A pending delay is interrupted and the run is marked failed. Runs that
        already reached a terminal state are returned unchanged.

        Raises:
            RunNotFoundError: If the run does not exist
        """
        event = self.cancel_events.get(run_id)
        if event is not None:
            event.set()

        updated = await self.run_store.update(
            run_id,
            RunUpdate(status=RunStatus.FAILED, completed_at=datetime.now()),
            if_status=RunStatus.IN_PROGRESS
        )
        if updated is None:
            logger.info(f"Journey run {run_id} already finished, nothing to cancel")
            return await self.get_run(run_id)

        self.progress.run_cancelled(run_id)
        return updated

    async def resume_active_runs(self) -> List[str]:
        """
        Re-attach execution to every in-progress run.

        Call once at startup before accepting new triggers. Runs resume from
        their persisted node with their persisted patient context. Runs whose
        journey no longer exists are marked failed. Calling again is harmless:
        runs already executing in this process are skipped.

        Returns:
            Ids of the runs resumed
        """
        runs = await self.run_store.list_by_status(RunStatus.IN_PROGRESS)
        resumed = []
        failed = 0

        for run in runs:
            if run.id in self._tasks:
                continue

            journey = await self.journey_store.get(run.journey_id)
            if journey is None:
                logger.error(f"Cannot resume journey run {run.id}: journey {run.journey_id} not found")
                await self._finish(run.id, RunStatus.FAILED)
                failed += 1
                continue

            logger.info(f"Resuming journey run {run.id} at node {run.current_node_id}")
            self.progress.run_started(run.id, journey.id, run.patient_context.id, run.current_node_id)
            self._launch(run, journey)
            resumed.append(run.id)

        self.progress.runs_resumed(len(resumed), failed)
        return resumed

    async def wait_for_run(self, run_id: str, timeout: Optional[float] = None) -> JourneyRun:
        """
        Wait for this process's task of a run to finish, then return its snapshot.

        Returns immediately if the run has no live task here. On timeout the
        current snapshot is returned and the run keeps going.
        """
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return await self.get_run(run_id)

    async def shutdown(self) -> None:
        """
        Stop all run tasks without touching their persisted state.

        Interrupted runs stay in progress and are picked up by the next
        resume, exactly as after a crash.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped {len(tasks)} journey run task(s)")

        self._tasks.clear()
        self.cancel_events.clear()

    def _launch(self, run: JourneyRun, journey: Journey) -> None:
        cancel_event = asyncio.Event()
        self.cancel_events[run.id] = cancel_event

        task = asyncio.create_task(
            self._execute(run.id, journey, run.patient_context, run.current_node_id, cancel_event),
            name=f"journey-run-{run.id}"
        )
        self._tasks[run.id] = task
        task.add_done_callback(lambda t, run_id=run.id: self._forget(run_id, t))

    def _forget(self, run_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]
            self.cancel_events.pop(run_id, None)

    async def _execute(
        self,
        run_id: str,
        journey: Journey,
        patient_context: PatientContext,
        node_id: Optional[str],
        cancel_event: asyncio.Event
    ) -> None:
        context = patient_context.as_mapping()
        steps = 0

        try:
            while node_id is not None:
                if cancel_event.is_set():
                    raise RunCancelledError(run_id)
                if self.max_steps_per_run is not None and steps >= self.max_steps_per_run:
                    raise StepBudgetExceededError(run_id, self.max_steps_per_run)

                node = journey.get_node(node_id)
                if node is None:
                    raise NodeNotFoundError(node_id, journey.id)

                updated = await self.run_store.update(
                    run_id,
                    RunUpdate(current_node_id=node_id),
                    if_status=RunStatus.IN_PROGRESS
                )
                if updated is None:
                    logger.info(f"Journey run {run_id} is no longer in progress, stopping")
                    return

                # A cancel may have landed while the position write was in flight
                if cancel_event.is_set():
                    raise RunCancelledError(run_id)

                self.progress.node_entered(run_id, node.id, node.type)
                node_id = await self.executor.execute(node, context, run_id, cancel_event)
                steps += 1

                # Yield so back-to-back non-suspending steps cannot starve other runs
                await asyncio.sleep(0)

            if await self._finish(run_id, RunStatus.COMPLETED) is not None:
                self.progress.run_completed(run_id, steps)

        except RunCancelledError:
            logger.info(f"Journey run {run_id} stopped after cancellation")

        except Exception as e:
            logger.exception(f"Error executing journey run {run_id}")
            self.progress.run_failed(run_id, str(e))
            try:
                await self._finish(run_id, RunStatus.FAILED)
            except Exception:
                logger.exception(f"Could not mark journey run {run_id} as failed")

    async def _finish(self, run_id: str, status: RunStatus) -> Optional[JourneyRun]:
        changes = RunUpdate(status=status, completed_at=datetime.now())
        if status == RunStatus.COMPLETED:
            changes = RunUpdate(status=status, current_node_id=None, completed_at=datetime.now())
        return await self.run_store.update(run_id, changes, if_status=RunStatus.IN_PROGRESS)
