from __future__ import annotations

"""Runtime dependency bundle and LangGraph state types.

The plan engine is dependency-injected:

- ``EngineDeps`` collects the command runner, the policy and the event sink.
- ``_GraphState`` is the state passed between LangGraph nodes.

Graph state holds only identifiers and flags; the ``ExecutionPlan`` itself
lives in the engine and is mutated only there.
"""

import asyncio
from dataclasses import dataclass, field
from typing import (
    Awaitable,
    Callable,
    NotRequired,
    Optional,
    Protocol,
    Required,
    TypedDict,
)

from ...remote.channel import CommandResult, OutputCallback
from ..policy.global_policy import GlobalPolicy
from ..schemas.domain import ApprovalDecision, ExecutionMode, ExecutionPlan, PlanEvent


class CommandRunner(Protocol):
    """The slice of ``RemoteCommandChannel`` the engine dispatches through."""

    async def run_command(
        self,
        command: str,
        *,
        timeout: Optional[float] = None,
        on_output: Optional[OutputCallback] = None,
    ) -> CommandResult: ...


EventSink = Callable[[PlanEvent], Awaitable[None]]

DEFAULT_IDLE_WARNING_SECONDS = 15.0
DEFAULT_IDLE_STALLED_SECONDS = 45.0


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``PlanEngine``.

    - ``runner``: where approved commands are dispatched (normally a
      ``RemoteCommandChannel``).
    - ``policy``: gating table and command classifier.
    - ``sink``: awaited once per event, in transition order.
    - ``command_timeout``: per-command execution timeout in seconds.
    - ``idle_warning_seconds`` / ``idle_stalled_seconds``: output silence
      before a running step gets an ``idle-warning`` or ``idle-stalled``
      event; ``0`` disables it.
    """

    runner: CommandRunner
    policy: GlobalPolicy = field(default_factory=GlobalPolicy)
    sink: Optional[EventSink] = None
    command_timeout: Optional[float] = None
    idle_warning_seconds: float = DEFAULT_IDLE_WARNING_SECONDS
    idle_stalled_seconds: float = DEFAULT_IDLE_STALLED_SECONDS


@dataclass
class ParkedApproval:
    """A step suspended until exactly one decision arrives."""

    step_id: str
    allowed: frozenset[ApprovalDecision]
    future: "asyncio.Future[ApprovalDecision]"


@dataclass
class ActiveRun:
    """Signals and bookkeeping of the plan currently being executed."""

    plan: ExecutionPlan
    mode: ExecutionMode
    resume_event: asyncio.Event = field(default_factory=asyncio.Event)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    parked: Optional[ParkedApproval] = None
    abort_reason: Optional[str] = None
    task: Optional["asyncio.Task[None]"] = None

    def __post_init__(self) -> None:
        self.resume_event.set()


class _GraphState(TypedDict):
    """LangGraph state for one plan execution.

    Required keys:

    - ``plan_id``: plan being executed.
    - ``idx``: index of the next step to process.
    - ``dispatch``: set by the gate node when the current step may run.
    - ``outcome``: terminal plan status once decided (``completed``,
      ``failed`` or ``cancelled``).

    Optional keys:

    - ``error``: human-readable failure reason for ``failed``.
    """

    plan_id: Required[str]
    idx: Required[int]
    dispatch: Required[bool]
    outcome: Required[Optional[str]]
    error: NotRequired[Optional[str]]


@dataclass(frozen=True)
class RollbackStepResult:
    index: int
    command: str
    exit_code: int
    output: str
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out
