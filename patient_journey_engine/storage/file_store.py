"""
File-backed stores: one JSON document per journey or run.

Writes land in a temp file that replaces the row atomically, so a crash
never leaves a half-written record. Read-modify-write patches hold an
exclusive lock on the directory's single lock file for safe concurrent
access.
"""

import asyncio
import json
import fcntl
import os
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union
import logging

from ..models import (
    Journey,
    JourneyDraft,
    JourneyRun,
    PatientContext,
    RunStatus,
    RunUpdate,
)
from ..utils.errors import RunNotFoundError, StoreUnavailableError
from .base import JourneyStore, RunStore

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".rows.lock"


class _JsonRows:
    """Directory of ``<id>.json`` row files."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path(self, row_id: str) -> Path:
        if not row_id or "/" in row_id or row_id.startswith("."):
            raise ValueError(f"Invalid row id: {row_id!r}")
        return self.directory / f"{row_id}.json"

    def check(self) -> None:
        """Create the directory and prove it is writable."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            probe = self.directory / f".probe-{uuid.uuid4().hex}"
            probe.write_text("ok")
            probe.unlink()
        except OSError as e:
            raise StoreUnavailableError(f"Store directory not writable: {self.directory}: {e}") from e

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the exclusive lock guarding read-modify-write of any row."""
        lock_path = self.directory / LOCK_FILE_NAME
        with open(lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def read(self, row_id: str) -> Optional[Dict[str, Any]]:
        try:
            path = self.path(row_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def write(self, row_id: str, data: Dict[str, Any]) -> None:
        path = self.path(row_id)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        logger.debug(f"Row saved: {path}")

    def read_all(self) -> List[Dict[str, Any]]:
        rows = []
        if not self.directory.exists():
            return rows
        for row_file in self.directory.glob("*.json"):
            try:
                with open(row_file, "r", encoding="utf-8") as f:
                    rows.append(json.load(f))
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Skipping unreadable row {row_file}: {e}")
        return rows


class FileJourneyStore(JourneyStore):
    """Journeys stored as ``<directory>/<journey_id>.json``."""

    def __init__(self, directory: Union[str, Path] = "data/journeys"):
        self.rows = _JsonRows(directory)

    async def check(self) -> None:
        await asyncio.to_thread(self.rows.check)

    async def create(self, draft: JourneyDraft) -> Journey:
        journey = Journey(id=str(uuid.uuid4()), **draft.model_dump())
        await asyncio.to_thread(self.rows.write, journey.id, journey.to_storage_dict())
        logger.info(f"Created journey: {journey.id} ({journey.name})")
        return journey

    async def get(self, journey_id: str) -> Optional[Journey]:
        data = await asyncio.to_thread(self.rows.read, journey_id)
        return Journey.from_storage_dict(data) if data is not None else None

    async def list_all(self) -> List[Journey]:
        rows = await asyncio.to_thread(self.rows.read_all)
        journeys = [Journey.from_storage_dict(row) for row in rows]
        journeys.sort(key=lambda j: j.created_at, reverse=True)
        return journeys


class FileRunStore(RunStore):
    """Runs stored as ``<directory>/<run_id>.json``."""

    def __init__(self, directory: Union[str, Path] = "data/runs"):
        self.rows = _JsonRows(directory)

    async def check(self) -> None:
        await asyncio.to_thread(self.rows.check)

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
        await asyncio.to_thread(self.rows.write, run.id, run.to_storage_dict())
        return run

    async def get(self, run_id: str) -> Optional[JourneyRun]:
        data = await asyncio.to_thread(self.rows.read, run_id)
        return JourneyRun.from_storage_dict(data) if data is not None else None

    async def update(
        self,
        run_id: str,
        changes: RunUpdate,
        if_status: Optional[RunStatus] = None
    ) -> Optional[JourneyRun]:
        return await asyncio.to_thread(self._update_sync, run_id, changes, if_status)

    def _update_sync(
        self,
        run_id: str,
        changes: RunUpdate,
        if_status: Optional[RunStatus]
    ) -> Optional[JourneyRun]:
        if self.rows.read(run_id) is None:
            raise RunNotFoundError(run_id)

        with self.rows.locked():
            run = JourneyRun.from_storage_dict(self.rows.read(run_id))
            if if_status is not None and run.status != if_status:
                return None

            updated = run.model_copy(update={**changes.changes(), "updated_at": datetime.now()})
            self.rows.write(run_id, updated.to_storage_dict())
            return updated

    async def list_by_status(self, status: RunStatus) -> List[JourneyRun]:
        rows = await asyncio.to_thread(self.rows.read_all)
        runs = [JourneyRun.from_storage_dict(row) for row in rows if row.get("status") == status.value]
        runs.sort(key=lambda r: (r.created_at, r.id))
        return runs
