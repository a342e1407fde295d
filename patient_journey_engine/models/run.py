"""
Journey run models: patient context and the durable run record.
"""

import math

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from typing import Any, Dict, Literal, Optional, Union
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle of a journey run. Completed and failed are terminal."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.IN_PROGRESS


class PatientContext(BaseModel):
    """
    Patient data a run evaluates conditions against.

    Extra keys are kept verbatim so conditions can reference any field
    supplied at trigger time.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    id: StrictStr = Field(min_length=1)
    age: Union[StrictInt, StrictFloat]
    language: Literal["en", "es"]
    condition: Literal["liver_replacement", "knee_replacement"]

    @field_validator("age")
    @classmethod
    def validate_age(cls, v: Union[int, float]) -> Union[int, float]:
        """Reject negative and non-finite ages."""
        if not math.isfinite(v):
            raise ValueError("age must be a finite number")
        if v < 0:
            raise ValueError("age must be non-negative")
        return v

    def as_mapping(self) -> Dict[str, Any]:
        """All fields, declared and extra, keyed by name."""
        return self.model_dump()


class JourneyRun(BaseModel):
    """Durable record of one journey execution for one patient."""

    id: str = Field(description="Opaque run identifier")
    journey_id: str = Field(description="Journey this run executes")
    patient_context: PatientContext
    status: RunStatus = Field(default=RunStatus.IN_PROGRESS)
    current_node_id: Optional[str] = Field(default=None)

    # Timing
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_status_dict(self) -> Dict[str, Any]:
        """Run snapshot as returned by status queries."""
        return {
            "runId": self.id,
            "journeyId": self.journey_id,
            "status": self.status.value,
            "currentNodeId": self.current_node_id,
            "patientContext": self.patient_context.model_dump(mode="json"),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "JourneyRun":
        """Create from a storage dictionary."""
        return cls.model_validate(data)


class RunUpdate(BaseModel):
    """
    Field-level partial patch for a run.

    Only fields explicitly set are applied, so ``current_node_id=None``
    clears the current node while an omitted field is left alone.
    """

    status: Optional[RunStatus] = None
    current_node_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually set."""
        return self.model_dump(exclude_unset=True)
