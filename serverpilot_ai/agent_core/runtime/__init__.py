"""Plan execution runtime.

``PlanEngine`` walks an ``ExecutionPlan`` through a LangGraph state machine and
dispatches approved commands through a ``CommandRunner``.
"""

from .engine import PlanEngine
from .models import CommandRunner, EngineDeps, EventSink, RollbackStepResult

__all__ = ["CommandRunner", "EngineDeps", "EventSink", "PlanEngine", "RollbackStepResult"]
