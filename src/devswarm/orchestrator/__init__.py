"""Orchestrator: Run の状態機械と進行管理"""

from .observer import LoggingObserver, RunObserver
from .orchestrator import Orchestrator
from .result import RunOutcome, RunStatus
from .retry import ReworkBudget, RetryManager, RetryPolicy, TaskRetryState
from .state import RunEvent, RunPhase, RunStateMachine, StateMachine, Transition, TransitionError

__all__ = [
    "Orchestrator",
    "RunObserver",
    "LoggingObserver",
    "RunOutcome",
    "RunStatus",
    "RetryManager",
    "RetryPolicy",
    "TaskRetryState",
    "ReworkBudget",
    "RunEvent",
    "RunPhase",
    "RunStateMachine",
    "StateMachine",
    "Transition",
    "TransitionError",
]
