"""Core orchestration module."""

from autodev.core.aggregator import MilestoneOutcome, PartialSuccessAggregator, partition_files
from autodev.core.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from autodev.core.errors import (
    AutodevError,
    ErrorClass,
    ErrorKind,
    MissingInformationError,
    ModelInvocationError,
    StructuralError,
    classify_error,
)
from autodev.core.failover import FailoverController, FailoverResult, ModelCandidate
from autodev.core.graceful_degradation import FailureReport, GracefulDegradation
from autodev.core.retry_utils import (
    TransientCommandError,
    create_retry_decorator,
    exponential_backoff_ms,
)
from autodev.core.session import Plan, PlanMilestone, Session, SessionPhase
from autodev.core.state_machine import ExecutionStateMachine, PhaseOutcome
from autodev.core.state_manager import CheckpointStore

__all__ = [
    # Aggregation
    "MilestoneOutcome",
    "PartialSuccessAggregator",
    "partition_files",
    # Circuit breaking
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Errors
    "AutodevError",
    "ErrorClass",
    "ErrorKind",
    "MissingInformationError",
    "ModelInvocationError",
    "StructuralError",
    "classify_error",
    # Failover
    "FailoverController",
    "FailoverResult",
    "ModelCandidate",
    "FailureReport",
    "GracefulDegradation",
    # Retry utilities
    "TransientCommandError",
    "create_retry_decorator",
    "exponential_backoff_ms",
    # Session and state
    "Plan",
    "PlanMilestone",
    "Session",
    "SessionPhase",
    "ExecutionStateMachine",
    "PhaseOutcome",
    "CheckpointStore",
]
