"""
Exception taxonomy for the journey engine.

Validation and lookup failures surface to callers synchronously. Anything
that goes wrong inside a run's execution loop is an ExecutionError and only
ever surfaces through the run's persisted status.
"""

from typing import Optional


class JourneyEngineError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(JourneyEngineError):
    """Malformed journey draft or patient context. Nothing is persisted."""
    pass


class NotFoundError(JourneyEngineError):
    """Lookup miss for a journey or run id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class JourneyNotFoundError(NotFoundError):
    """Unknown journey id."""

    def __init__(self, journey_id: str):
        super().__init__("Journey", journey_id)


class RunNotFoundError(NotFoundError):
    """Unknown run id."""

    def __init__(self, run_id: str):
        super().__init__("Journey run", run_id)


class ExecutionError(JourneyEngineError):
    """Failure inside a run's execution loop."""
    pass


class NodeNotFoundError(ExecutionError):
    """A run reached a node id its journey does not define."""

    def __init__(self, node_id: str, journey_id: Optional[str] = None):
        self.node_id = node_id
        self.journey_id = journey_id
        super().__init__(f"Node with id {node_id} not found in journey {journey_id}")


class StepBudgetExceededError(ExecutionError):
    """A run executed more nodes than the configured step budget allows."""

    def __init__(self, run_id: str, max_steps: int):
        self.run_id = run_id
        self.max_steps = max_steps
        super().__init__(f"Run {run_id} exceeded step budget of {max_steps} nodes")


class InvalidOperatorError(ExecutionError):
    """Condition operator outside the supported set."""

    def __init__(self, operator: object):
        self.operator = operator
        super().__init__(f"Unknown operator: {operator!r}")


class RunCancelledError(JourneyEngineError):
    """Raised inside a run's loop once the run has been cancelled."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Journey run {run_id} cancelled")


class StoreUnavailableError(JourneyEngineError):
    """Persistence backend unreachable or not writable."""
    pass
