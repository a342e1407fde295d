"""
Utility modules for the Patient Journey Engine.
"""

from .errors import (
    JourneyEngineError,
    ValidationError,
    NotFoundError,
    JourneyNotFoundError,
    RunNotFoundError,
    ExecutionError,
    NodeNotFoundError,
    StepBudgetExceededError,
    InvalidOperatorError,
    RunCancelledError,
    StoreUnavailableError,
)
from .retry import (
    RetryableError,
    TransientError,
    PermanentError,
    create_retry_decorator,
    create_store_connect_retry,
    retry_api,
    handle_http_error,
)
from .logging_config import (
    configure_logging,
    ProgressLogger,
)

__all__ = [
    # Errors
    "JourneyEngineError",
    "ValidationError",
    "NotFoundError",
    "JourneyNotFoundError",
    "RunNotFoundError",
    "ExecutionError",
    "NodeNotFoundError",
    "StepBudgetExceededError",
    "InvalidOperatorError",
    "RunCancelledError",
    "StoreUnavailableError",
    # Retry utilities
    "RetryableError",
    "TransientError",
    "PermanentError",
    "create_retry_decorator",
    "create_store_connect_retry",
    "retry_api",
    "handle_http_error",
    # Logging
    "configure_logging",
    "ProgressLogger",
]
