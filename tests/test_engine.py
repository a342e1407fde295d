"""Tests for the journey execution engine."""

import asyncio

import pytest

from patient_journey_engine.core import JourneyEngine, NodeExecutor
from patient_journey_engine.models import PatientContext, RunStatus
from patient_journey_engine.storage import InMemoryJourneyStore, InMemoryRunStore
from patient_journey_engine.utils.errors import JourneyNotFoundError, RunNotFoundError

from conftest import (
    SENIOR_PATH,
    STANDARD_PATH,
    StalledDelayExecutor,
    make_care_journey,
    make_patient,
    store_journey,
    wait_until,
)


LOOP_JOURNEY = {
    "name": "Reminder loop",
    "start_node_id": "ping",
    "nodes": [
        {"id": "ping", "type": "MESSAGE", "message": "ping", "next_node_id": "pong"},
        {"id": "pong", "type": "MESSAGE", "message": "pong", "next_node_id": "ping"},
    ],
}


def patient(age=72, **extra) -> PatientContext:
    return PatientContext.model_validate(make_patient(age=age, **extra))


class CancelOnEntryRunStore(InMemoryRunStore):
    """Cancels the run from inside the write that positions it at a node."""

    def __init__(self, node_id):
        super().__init__()
        self.node_id = node_id
        self.engine = None

    async def update(self, run_id, changes, if_status=None):
        updated = await super().update(run_id, changes, if_status)
        if updated is not None and changes.changes().get("current_node_id") == self.node_id:
            await self.engine.cancel(run_id)
        return updated


class TestRunPaths:
    @pytest.mark.asyncio
    async def test_senior_patient_takes_true_branch(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)

        run_id = await engine.start(journey.id, patient(age=72))
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.COMPLETED
        assert run.current_node_id is None
        assert run.completed_at is not None
        assert run_store.visited[run_id] == SENIOR_PATH

    @pytest.mark.asyncio
    async def test_standard_patient_takes_false_branch(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)

        run_id = await engine.start(journey.id, patient(age=40))
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.COMPLETED
        assert run_store.visited[run_id] == STANDARD_PATH

    @pytest.mark.asyncio
    async def test_start_returns_before_journey_finishes(self, journey_store, run_store):
        journey = await store_journey(journey_store, make_care_journey(delay_seconds=60))
        engine = JourneyEngine(journey_store, run_store)

        run_id = await engine.start(journey.id, patient())
        run = await engine.get_run(run_id)

        assert run.status == RunStatus.IN_PROGRESS
        assert run.journey_id == journey.id
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_messages_are_delivered_with_patient_context(self, journey_store, run_store, care_journey):
        delivered = []

        async def sender(run_id, context, node):
            delivered.append((context["id"], context["language"], node.id))

        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store, executor=NodeExecutor(message_sender=sender))

        run_id = await engine.start(journey.id, patient(age=72))
        await engine.wait_for_run(run_id, timeout=5)

        assert delivered == [
            ("patient-72", "en", "welcome"),
            ("patient-72", "en", "senior"),
            ("patient-72", "en", "followup"),
        ]

    @pytest.mark.asyncio
    async def test_condition_on_extra_context_field(self, journey_store, run_store):
        data = make_care_journey()
        data["nodes"][1]["condition"] = {"field": "surgery_type", "operator": "in", "value": ["hip", "knee"]}
        journey = await store_journey(journey_store, data)
        engine = JourneyEngine(journey_store, run_store)

        run_id = await engine.start(journey.id, patient(age=20, surgery_type="hip"))
        await engine.wait_for_run(run_id, timeout=5)

        assert run_store.visited[run_id] == SENIOR_PATH

    @pytest.mark.asyncio
    async def test_unknown_journey_creates_no_run(self, journey_store, run_store):
        engine = JourneyEngine(journey_store, run_store)

        with pytest.raises(JourneyNotFoundError):
            await engine.start("no-such-journey", patient())

        assert await run_store.list_by_status(RunStatus.IN_PROGRESS) == []

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_interfere(self, journey_store, run_store):
        journey = await store_journey(journey_store, make_care_journey(delay_seconds=0.05))
        engine = JourneyEngine(journey_store, run_store)

        senior_ids = [await engine.start(journey.id, patient(age=70 + i)) for i in range(5)]
        standard_ids = [await engine.start(journey.id, patient(age=30 + i)) for i in range(5)]
        for run_id in senior_ids + standard_ids:
            await engine.wait_for_run(run_id, timeout=5)

        for run_id in senior_ids:
            assert run_store.visited[run_id] == SENIOR_PATH
        for run_id in standard_ids:
            assert run_store.visited[run_id] == STANDARD_PATH
        assert engine.active_run_ids == []


class TestRunStatus:
    @pytest.mark.asyncio
    async def test_unknown_run(self, journey_store, run_store):
        engine = JourneyEngine(journey_store, run_store)

        with pytest.raises(RunNotFoundError):
            await engine.get_run("no-such-run")

    @pytest.mark.asyncio
    async def test_status_reads_are_idempotent(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)
        run_id = await engine.start(journey.id, patient())
        await engine.wait_for_run(run_id, timeout=5)

        first = await engine.get_run(run_id)
        second = await engine.get_run(run_id)

        assert first.to_status_dict() == second.to_status_dict()

    @pytest.mark.asyncio
    async def test_status_dict_shape(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)
        run_id = await engine.start(journey.id, patient(age=72, surgery_date="2024-01-01"))
        run = await engine.wait_for_run(run_id, timeout=5)

        status = run.to_status_dict()

        assert status["runId"] == run_id
        assert status["journeyId"] == journey.id
        assert status["status"] == "completed"
        assert status["currentNodeId"] is None
        assert status["patientContext"]["surgery_date"] == "2024-01-01"
        assert status["completedAt"] is not None

    @pytest.mark.asyncio
    async def test_list_runs_by_status(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        slow = await store_journey(journey_store, make_care_journey(delay_seconds=60))
        engine = JourneyEngine(journey_store, run_store)

        done_id = await engine.start(journey.id, patient())
        await engine.wait_for_run(done_id, timeout=5)
        pending_id = await engine.start(slow.id, patient())

        assert [r.id for r in await engine.list_runs()] == [pending_id]
        assert [r.id for r in await engine.list_runs(RunStatus.COMPLETED)] == [done_id]
        await engine.shutdown()


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_continues_from_persisted_node(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        crashed = JourneyEngine(journey_store, run_store, executor=StalledDelayExecutor())
        run_id = await crashed.start(journey.id, patient(age=72))

        await wait_until(lambda: _current_node(run_store, run_id, "delay"))
        await crashed.shutdown()

        run = await run_store.get(run_id)
        assert run.status == RunStatus.IN_PROGRESS
        assert run.current_node_id == "delay"

        engine = JourneyEngine(journey_store, run_store)
        assert await engine.resume_active_runs() == [run_id]
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.COMPLETED
        # The interrupted delay runs again, nothing before it does
        assert run_store.visited[run_id] == ["welcome", "age_check", "senior", "delay", "delay", "followup"]

    @pytest.mark.asyncio
    async def test_resume_keeps_patient_context(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        crashed = JourneyEngine(journey_store, run_store, executor=StalledDelayExecutor())
        run_id = await crashed.start(journey.id, patient(age=40, ward="B"))
        await wait_until(lambda: _current_node(run_store, run_id, "delay"))
        await crashed.shutdown()

        engine = JourneyEngine(journey_store, run_store)
        await engine.resume_active_runs()
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.patient_context.age == 40
        assert run.patient_context.as_mapping()["ward"] == "B"
        assert run_store.visited[run_id][-1] == "followup"

    @pytest.mark.asyncio
    async def test_resume_is_idempotent(self, journey_store, run_store):
        journey = await store_journey(journey_store, make_care_journey(delay_seconds=60))
        engine = JourneyEngine(journey_store, run_store)
        run_id = await engine.start(journey.id, patient())

        assert await engine.resume_active_runs() == []
        assert engine.active_run_ids == [run_id]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_resume_with_missing_journey_fails_run(self, run_store):
        first_store = InMemoryJourneyStore()
        journey = await store_journey(first_store, make_care_journey(delay_seconds=60))
        crashed = JourneyEngine(first_store, run_store)
        run_id = await crashed.start(journey.id, patient())
        await crashed.shutdown()

        engine = JourneyEngine(InMemoryJourneyStore(), run_store)

        assert await engine.resume_active_runs() == []
        run = await engine.get_run(run_id)
        assert run.status == RunStatus.FAILED
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_terminal_runs_are_not_resumed(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)
        run_id = await engine.start(journey.id, patient())
        await engine.wait_for_run(run_id, timeout=5)

        restarted = JourneyEngine(journey_store, run_store)

        assert await restarted.resume_active_runs() == []
        assert (await restarted.get_run(run_id)).status == RunStatus.COMPLETED


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_interrupts_pending_delay(self, journey_store, run_store):
        journey = await store_journey(journey_store, make_care_journey(delay_seconds=60))
        engine = JourneyEngine(journey_store, run_store)
        run_id = await engine.start(journey.id, patient())
        await wait_until(lambda: _current_node(run_store, run_id, "delay"))

        run = await engine.cancel(run_id)
        assert run.status == RunStatus.FAILED

        await engine.wait_for_run(run_id, timeout=1)
        assert engine.active_run_ids == []
        run = await engine.get_run(run_id)
        assert run.status == RunStatus.FAILED
        assert "followup" not in run_store.visited[run_id]

    @pytest.mark.asyncio
    async def test_cancel_of_terminal_run_is_noop(self, journey_store, run_store, care_journey):
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)
        run_id = await engine.start(journey.id, patient())
        completed = await engine.wait_for_run(run_id, timeout=5)

        run = await engine.cancel(run_id)

        assert run.status == RunStatus.COMPLETED
        assert run.completed_at == completed.completed_at

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, journey_store, run_store):
        engine = JourneyEngine(journey_store, run_store)

        with pytest.raises(RunNotFoundError):
            await engine.cancel("no-such-run")

    @pytest.mark.asyncio
    async def test_cancel_of_orphaned_run(self, journey_store, run_store):
        journey = await store_journey(journey_store, make_care_journey(delay_seconds=60))
        crashed = JourneyEngine(journey_store, run_store)
        run_id = await crashed.start(journey.id, patient())
        await crashed.shutdown()

        engine = JourneyEngine(journey_store, run_store)
        run = await engine.cancel(run_id)

        assert run.status == RunStatus.FAILED
        assert await engine.resume_active_runs() == []

    @pytest.mark.asyncio
    async def test_cancel_during_position_write_skips_node(self, journey_store, care_journey):
        delivered = []

        async def sender(run_id, context, node):
            delivered.append(node.id)

        run_store = CancelOnEntryRunStore("senior")
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store, executor=NodeExecutor(message_sender=sender))
        run_store.engine = engine

        run_id = await engine.start(journey.id, patient(age=72))
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.FAILED
        assert run.current_node_id == "senior"
        assert delivered == ["welcome"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_sender_error_fails_run(self, journey_store, run_store, care_journey):
        async def sender(run_id, context, node):
            if node.id == "senior":
                raise ConnectionError("sms gateway down")

        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store, executor=NodeExecutor(message_sender=sender))

        run_id = await engine.start(journey.id, patient(age=72))
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.FAILED
        assert run.current_node_id == "senior"
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_dangling_node_reference_fails_run(self, journey_store, run_store):
        data = make_care_journey()
        data["nodes"][0]["next_node_id"] = "nowhere"
        journey = await store_journey(journey_store, data)
        engine = JourneyEngine(journey_store, run_store)

        run_id = await engine.start(journey.id, patient())
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.FAILED
        assert run.current_node_id == "welcome"

    @pytest.mark.asyncio
    async def test_failure_in_one_run_does_not_affect_others(self, journey_store, run_store, care_journey):
        async def sender(run_id, context, node):
            if context["id"] == "patient-72" and node.id == "senior":
                raise ConnectionError("sms gateway down")

        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store, executor=NodeExecutor(message_sender=sender))

        failing = await engine.start(journey.id, patient(age=72))
        healthy = await engine.start(journey.id, patient(age=40))

        assert (await engine.wait_for_run(failing, timeout=5)).status == RunStatus.FAILED
        assert (await engine.wait_for_run(healthy, timeout=5)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_step_budget_fails_cyclic_run(self, journey_store, run_store):
        journey = await store_journey(journey_store, LOOP_JOURNEY)
        engine = JourneyEngine(journey_store, run_store, max_steps_per_run=10)

        run_id = await engine.start(journey.id, patient())
        run = await engine.wait_for_run(run_id, timeout=5)

        assert run.status == RunStatus.FAILED
        assert len(run_store.visited[run_id]) == 10


class TestCycles:
    @pytest.mark.asyncio
    async def test_unbounded_cycle_stays_in_progress_without_starving_others(
        self, journey_store, run_store, care_journey
    ):
        loop_journey = await store_journey(journey_store, LOOP_JOURNEY)
        journey = await store_journey(journey_store, care_journey)
        engine = JourneyEngine(journey_store, run_store)

        looping = await engine.start(loop_journey.id, patient())
        other = await engine.start(journey.id, patient(age=40))

        assert (await engine.wait_for_run(other, timeout=5)).status == RunStatus.COMPLETED
        assert (await engine.get_run(looping)).status == RunStatus.IN_PROGRESS

        await engine.cancel(looping)
        await engine.wait_for_run(looping, timeout=1)
        assert (await engine.get_run(looping)).status == RunStatus.FAILED
        assert engine.active_run_ids == []


async def _current_node(run_store, run_id, node_id):
    run = await run_store.get(run_id)
    return run is not None and run.current_node_id == node_id


def test_terminal_statuses():
    assert RunStatus.COMPLETED.is_terminal
    assert RunStatus.FAILED.is_terminal
    assert not RunStatus.IN_PROGRESS.is_terminal


@pytest.mark.asyncio
async def test_shutdown_leaves_runs_in_progress(journey_store, run_store):
    journey = await store_journey(journey_store, make_care_journey(delay_seconds=60))
    engine = JourneyEngine(journey_store, run_store)
    run_ids = [await engine.start(journey.id, patient(age=a)) for a in (30, 80)]
    await asyncio.sleep(0.05)

    await engine.shutdown()

    assert engine.active_run_ids == []
    for run_id in run_ids:
        assert (await engine.get_run(run_id)).status == RunStatus.IN_PROGRESS
