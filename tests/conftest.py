"""Shared fixtures for journey engine tests."""

import asyncio
import copy
from typing import Any, Dict, List, Optional

import pytest

from patient_journey_engine.core import NodeExecutor
from patient_journey_engine.models import JourneyDraft, RunStatus, RunUpdate
from patient_journey_engine.storage import InMemoryJourneyStore, InMemoryRunStore


CARE_JOURNEY: Dict[str, Any] = {
    "name": "Hip Replacement Recovery Journey",
    "start_node_id": "welcome",
    "nodes": [
        {
            "id": "welcome",
            "type": "MESSAGE",
            "message": "Welcome to your recovery journey!",
            "next_node_id": "age_check",
        },
        {
            "id": "age_check",
            "type": "CONDITIONAL",
            "condition": {"field": "age", "operator": "gte", "value": 65},
            "on_true_next_node_id": "senior",
            "on_false_next_node_id": "standard",
        },
        {
            "id": "senior",
            "type": "MESSAGE",
            "message": "You have been enrolled in our Senior Care Program.",
            "next_node_id": "delay",
        },
        {
            "id": "standard",
            "type": "MESSAGE",
            "message": "You have been enrolled in our Standard Recovery Program.",
            "next_node_id": "delay",
        },
        {
            "id": "delay",
            "type": "DELAY",
            "duration_seconds": 0,
            "next_node_id": "followup",
        },
        {
            "id": "followup",
            "type": "MESSAGE",
            "message": "How are you feeling today?",
            "next_node_id": None,
        },
    ],
}

SENIOR_PATH = ["welcome", "age_check", "senior", "delay", "followup"]
STANDARD_PATH = ["welcome", "age_check", "standard", "delay", "followup"]


def make_care_journey(delay_seconds: float = 0) -> Dict[str, Any]:
    """The sample care journey with a chosen delay."""
    journey = copy.deepcopy(CARE_JOURNEY)
    for node in journey["nodes"]:
        if node["type"] == "DELAY":
            node["duration_seconds"] = delay_seconds
    return journey


def make_patient(age: float = 72, **extra: Any) -> Dict[str, Any]:
    return {
        "id": f"patient-{age}",
        "age": age,
        "language": "en",
        "condition": "knee_replacement",
        **extra,
    }


class RecordingRunStore(InMemoryRunStore):
    """In-memory run store that records every node position written per run."""

    def __init__(self):
        super().__init__()
        self.visited: Dict[str, List[str]] = {}

    async def update(self, run_id, changes: RunUpdate, if_status: Optional[RunStatus] = None):
        updated = await super().update(run_id, changes, if_status)
        if updated is not None and changes.changes().get("current_node_id"):
            self.visited.setdefault(run_id, []).append(changes.current_node_id)
        return updated


class StalledDelayExecutor(NodeExecutor):
    """Delays never expire, standing in for a process that dies mid-delay."""

    async def _execute_delay(self, node, run_id, cancel_event):
        await asyncio.Event().wait()


async def store_journey(journey_store: InMemoryJourneyStore, data: Dict[str, Any]):
    """Persist a journey definition without going through validation."""
    return await journey_store.create(JourneyDraft.model_validate(data))


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01):
    """Poll an async predicate until it returns a truthy value."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = await predicate()
        if result:
            return result
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def care_journey():
    return make_care_journey()


@pytest.fixture
def senior_patient():
    return make_patient(age=72)


@pytest.fixture
def standard_patient():
    return make_patient(age=40)


@pytest.fixture
def journey_store():
    return InMemoryJourneyStore()


@pytest.fixture
def run_store():
    return RecordingRunStore()
