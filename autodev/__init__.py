"""
autodev - resumable idea-to-code automation

Drives AI coding CLIs through analyze, plan, implement, review and test
phases with model failover, circuit breaking, partial-success fan-out and
crash-safe checkpoints.
"""

__version__ = "0.1.0"

from autodev.core.aggregator import PartialSuccessAggregator
from autodev.core.failover import FailoverController
from autodev.core.session import Session, SessionPhase
from autodev.core.state_machine import ExecutionStateMachine

__all__ = [
    "ExecutionStateMachine",
    "FailoverController",
    "PartialSuccessAggregator",
    "Session",
    "SessionPhase",
]
