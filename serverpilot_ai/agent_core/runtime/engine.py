from __future__ import annotations

"""LangGraph plan engine.

``PlanEngine`` walks an ``ExecutionPlan`` produced by the planning subsystem
and dispatches its commands, one at a time and in order, through a command
runner (the remote command channel).

Execution model
---------------

- The engine runs a LangGraph state machine over a small ``_GraphState``.
- Each pass through ``boundary -> gate -> dispatch`` processes exactly one
  step at index ``idx``.

Step boundary
-------------

Pause and cancel requests take effect here. A paused plan waits at the
boundary until resumed; a command already in flight is never interrupted by
a pause.

Gating
------

The step's ``(mode, risk level)`` pair is looked up in the gating table.
Auto-approved steps go straight to dispatch. Gated steps park on a future
and an ``approval-needed`` event is emitted; the wait has no timeout and ends
on a decision or a plan cancel. ``blocked`` steps accept only ``reject`` or
``skip``.

Outcomes
--------

``reject`` or a failed command moves the plan to ``failed`` and leaves later
steps ``pending``. ``cancel`` moves it to ``cancelled`` and marks every
pending step ``cancelled``. Rollback is a separate explicit operation.

Output watch
------------

While a step runs, its streamed output goes through an ``OutputWatch`` that
emits ``prompt-detected``, ``idle-warning`` and ``idle-stalled`` events for
that step. These are notices only; they never change step or plan status.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from langgraph.graph import END, StateGraph

from ...core.errors import (
    CommandExecutionError,
    ConnectionLostError,
    PlanNotFoundError,
    PlanStateError,
)
from ..schemas.domain import (
    TERMINAL_PLAN_STATUSES,
    ApprovalDecision,
    ApprovalRequest,
    ExecutionMode,
    ExecutionPlan,
    PlanEvent,
    PlanEventType,
    PlanStatus,
    PlanStep,
    StepStatus,
)
from .models import ActiveRun, EngineDeps, ParkedApproval, RollbackStepResult, _GraphState
from .output_watch import OutputWatch

logger = logging.getLogger(__name__)

_OUTCOME_EVENTS = {
    PlanStatus.completed: PlanEventType.complete,
    PlanStatus.failed: PlanEventType.failed,
    PlanStatus.cancelled: PlanEventType.cancelled,
}


class PlanEngine:
    """Execute plans with risk gating, human approvals and pause/resume/cancel.

    One plan is active at a time. All public operations are coroutines or
    plain methods meant to be called from the event loop that runs the engine.
    """

    def __init__(self, *, deps: EngineDeps) -> None:
        """
        Initialize the PlanEngine.

        Args:
            deps: The runtime dependencies (command runner, policy, event sink).
        """
        self._deps = deps
        self._plans: Dict[str, ExecutionPlan] = {}
        self._active: Optional[ActiveRun] = None
        self._rollback_running = False
        self._graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("boundary", self._node_boundary)
        g.add_node("gate", self._node_gate)
        g.add_node("dispatch", self._node_dispatch)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "boundary")
        g.add_conditional_edges(
            "boundary",
            self._route_after_boundary,
            {"finish": "finish", "gate": "gate"},
        )
        g.add_conditional_edges(
            "gate",
            self._route_after_gate,
            {"finish": "finish", "dispatch": "dispatch", "continue": "boundary"},
        )
        g.add_conditional_edges(
            "dispatch",
            self._route_after_dispatch,
            {"finish": "finish", "continue": "boundary"},
        )
        g.add_edge("finish", END)
        return g.compile()

    # ------------------------------------------------------------------
    # Plan registry
    # ------------------------------------------------------------------

    async def load(self, plan: ExecutionPlan) -> ExecutionPlan:
        """Register a freshly generated plan and emit ``generated``."""
        if plan.id in self._plans:
            raise PlanStateError(f"plan {plan.id} is already loaded")
        plan.status = PlanStatus.idle
        self._plans[plan.id] = plan
        logger.info("Loaded plan %s (%d steps): %s", plan.id, len(plan.steps), plan.goal)
        await self._emit(PlanEventType.generated, plan)
        return plan

    def get_plan(self, plan_id: str) -> ExecutionPlan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def list_plans(self) -> List[ExecutionPlan]:
        return list(self._plans.values())

    @property
    def active_plan(self) -> Optional[ExecutionPlan]:
        return self._active.plan if self._active is not None else None

    @property
    def parked_step_id(self) -> Optional[str]:
        run = self._active
        if run is None or run.parked is None:
            return None
        return run.parked.step_id

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    async def execute(self, plan_id: str, mode: ExecutionMode) -> ExecutionPlan:
        """Start executing an ``idle`` plan in the background.

        Raises:
            PlanNotFoundError: Unknown plan id.
            PlanStateError: The plan is not idle, or another plan is still running.
        """
        plan = self.get_plan(plan_id)
        if plan.status != PlanStatus.idle:
            raise PlanStateError(f"plan {plan_id} is {plan.status.value}, expected idle")
        if self._active is not None and self._active.plan.status not in TERMINAL_PLAN_STATUSES:
            raise PlanStateError(f"plan {self._active.plan.id} is still {self._active.plan.status.value}")
        if self._rollback_running:
            raise PlanStateError("a rollback is in progress")

        run = ActiveRun(plan=plan, mode=mode)
        self._active = run
        plan.mode = mode
        plan.status = PlanStatus.running
        logger.info("Executing plan %s in %s mode", plan_id, mode.value)
        await self._emit(PlanEventType.plan_update, plan)

        run.task = asyncio.create_task(self._drive(run), name=f"plan-{plan_id}")
        return plan

    def approve(self, step_id: str) -> bool:
        return self.decide(step_id, ApprovalDecision.approve)

    def reject(self, step_id: str) -> bool:
        return self.decide(step_id, ApprovalDecision.reject)

    def skip(self, step_id: str) -> bool:
        return self.decide(step_id, ApprovalDecision.skip)

    def decide(self, step_id: str, decision: ApprovalDecision) -> bool:
        """Deliver a decision to the parked step.

        Returns ``False`` without touching any state when ``step_id`` is not
        the step currently parked (late or duplicate decisions).

        Raises:
            PlanStateError: The decision is not allowed for this step
                (``approve`` on a ``blocked`` step).
        """
        run = self._active
        parked = run.parked if run is not None else None
        if parked is None or parked.step_id != step_id or parked.future.done():
            logger.info("Ignoring %s for step %s: not awaiting a decision", decision.value, step_id)
            return False
        if decision not in parked.allowed:
            raise PlanStateError(f"step {step_id} does not accept {decision.value}")
        parked.future.set_result(decision)
        logger.info("Step %s decision: %s", step_id, decision.value)
        return True

    async def pause(self) -> ExecutionPlan:
        """Request a pause; it takes effect at the next step boundary."""
        run = self._require_active()
        if run.plan.status != PlanStatus.running:
            raise PlanStateError(f"plan {run.plan.id} is {run.plan.status.value}, expected running")
        run.resume_event.clear()
        run.plan.status = PlanStatus.paused
        logger.info("Plan %s paused", run.plan.id)
        await self._emit(PlanEventType.plan_update, run.plan)
        return run.plan

    async def resume(self) -> ExecutionPlan:
        run = self._require_active()
        if run.plan.status != PlanStatus.paused:
            raise PlanStateError(f"plan {run.plan.id} is {run.plan.status.value}, expected paused")
        run.plan.status = PlanStatus.running
        run.resume_event.set()
        logger.info("Plan %s resumed", run.plan.id)
        await self._emit(PlanEventType.plan_update, run.plan)
        return run.plan

    async def cancel(self, plan_id: Optional[str] = None) -> ExecutionPlan:
        """Cancel a non-terminal plan.

        An idle plan is cancelled immediately. A running or paused plan stops
        at its current suspension point: a parked approval is abandoned and an
        in-flight command is interrupted.
        """
        run = self._active
        if plan_id is None:
            if run is None:
                raise PlanStateError("no active plan")
            plan_id = run.plan.id
        plan = self.get_plan(plan_id)
        if plan.status in TERMINAL_PLAN_STATUSES:
            raise PlanStateError(f"plan {plan_id} is already {plan.status.value}")

        if run is None or run.plan.id != plan_id:
            self._cancel_pending_steps(plan)
            plan.status = PlanStatus.cancelled
            logger.info("Idle plan %s cancelled", plan_id)
            await self._emit(PlanEventType.cancelled, plan)
            return plan

        logger.info("Cancelling plan %s", plan_id)
        run.cancel_event.set()
        await self.wait(plan_id)
        return plan

    def on_connection_lost(self, error: ConnectionLostError) -> None:
        """Fail the active plan because the remote session dropped."""
        run = self._active
        if run is None or run.plan.status in TERMINAL_PLAN_STATUSES:
            return
        if run.abort_reason is not None:
            return
        logger.error("Connection lost during plan %s: %s", run.plan.id, error)
        run.abort_reason = f"connection lost: {error}"
        run.cancel_event.set()

    async def wait(self, plan_id: Optional[str] = None) -> Optional[ExecutionPlan]:
        """Wait until the active plan's execution task has finished."""
        run = self._active
        if run is None or (plan_id is not None and run.plan.id != plan_id):
            return self._plans.get(plan_id) if plan_id is not None else None
        if run.task is not None:
            await asyncio.wait({run.task})
        return run.plan

    async def rollback(self, plan_id: str) -> List[RollbackStepResult]:
        """Run the plan's ``rollback_plan`` in order, stopping at the first failure.

        Allowed only for ``failed`` or ``cancelled`` plans that define a
        rollback plan, and refused while another plan is still executing.
        Each command emits a ``rollback-update`` event.
        """
        plan = self.get_plan(plan_id)
        if plan.status not in (PlanStatus.failed, PlanStatus.cancelled):
            raise PlanStateError(f"plan {plan_id} is {plan.status.value}; rollback needs failed or cancelled")
        if not plan.rollback_plan:
            raise PlanStateError(f"plan {plan_id} has no rollback plan")
        if self._rollback_running:
            raise PlanStateError("a rollback is already in progress")
        if self._active is not None and self._active.plan.status not in TERMINAL_PLAN_STATUSES:
            raise PlanStateError(f"plan {self._active.plan.id} is still {self._active.plan.status.value}")

        self._rollback_running = True
        results: List[RollbackStepResult] = []
        try:
            total = len(plan.rollback_plan)
            for index, command in enumerate(plan.rollback_plan):
                await self._emit(
                    PlanEventType.rollback_update,
                    plan,
                    payload={"index": index, "total": total, "command": command, "status": "running"},
                )
                try:
                    result = await self._deps.runner.run_command(command, timeout=self._deps.command_timeout)
                except ConnectionLostError as e:
                    await self._emit(
                        PlanEventType.rollback_update,
                        plan,
                        payload={"index": index, "total": total, "command": command, "status": "failed", "error": str(e)},
                    )
                    raise
                step_result = RollbackStepResult(
                    index=index,
                    command=command,
                    exit_code=result.exit_code,
                    output=result.output,
                    timed_out=result.timed_out,
                )
                results.append(step_result)
                await self._emit(
                    PlanEventType.rollback_update,
                    plan,
                    payload={
                        "index": index,
                        "total": total,
                        "command": command,
                        "status": "succeeded" if step_result.succeeded else "failed",
                        "exit_code": result.exit_code,
                        "output": result.output,
                    },
                )
                if not step_result.succeeded:
                    logger.warning("Rollback of plan %s stopped at command %d: %r", plan_id, index, command)
                    break
        finally:
            self._rollback_running = False
        return results

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def _drive(self, run: ActiveRun) -> None:
        state: _GraphState = {
            "plan_id": run.plan.id,
            "idx": 0,
            "dispatch": False,
            "outcome": None,
            "error": None,
        }
        config = {"recursion_limit": 3 * len(run.plan.steps) + 10}
        try:
            await self._graph.ainvoke(state, config=config)
        except Exception as e:
            logger.exception("Plan %s aborted by internal error", run.plan.id)
            await self._finalize(run, PlanStatus.failed, f"internal error: {e}")

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Graph entry node. Currently a no-op."""
        return state

    async def _node_boundary(self, state: _GraphState) -> _GraphState:
        """Step boundary: honour cancel and pause, detect the end of the plan."""
        run = self._run_for(state)
        if run.cancel_event.is_set():
            return self._stopped(run, state)
        if state["idx"] >= len(run.plan.steps):
            return {**state, "dispatch": False, "outcome": PlanStatus.completed.value}
        if not run.resume_event.is_set():
            logger.debug("Plan %s waiting at boundary before step %d", run.plan.id, state["idx"])
            cancelled, _ = await self._until_cancelled(run, run.resume_event.wait())
            if cancelled:
                return self._stopped(run, state)
        return {**state, "dispatch": False}

    async def _node_gate(self, state: _GraphState) -> _GraphState:
        """Decide whether the step runs automatically or waits for a human."""
        run = self._run_for(state)
        step = run.plan.steps[state["idx"]]
        gate = self._deps.policy.gate(step, run.mode)

        if not gate.require_decision:
            await self._set_step(run, step, StepStatus.auto_approved)
            return {**state, "dispatch": True}

        loop = asyncio.get_running_loop()
        run.parked = ParkedApproval(step_id=step.id, allowed=gate.allowed_decisions, future=loop.create_future())
        await self._set_step(run, step, StepStatus.awaiting_approval)
        await self._emit(
            PlanEventType.approval_needed,
            run.plan,
            step=step,
            approval=ApprovalRequest(
                step_id=step.id,
                command=step.command,
                risk_level=step.risk_assessment.level,
                warning_message=step.risk_assessment.warning_message,
                allowed_decisions=sorted(gate.allowed_decisions, key=lambda d: d.value),
            ),
        )

        try:
            cancelled, decision = await self._until_cancelled(run, run.parked.future)
        finally:
            run.parked = None
        if cancelled:
            return self._stopped(run, state)

        if decision == ApprovalDecision.reject:
            await self._set_step(run, step, StepStatus.rejected)
            return {**state, "outcome": PlanStatus.failed.value, "error": f"step {step.id} rejected"}
        if decision == ApprovalDecision.skip:
            await self._set_step(run, step, StepStatus.skipped)
            return {**state, "idx": state["idx"] + 1, "dispatch": False}
        await self._set_step(run, step, StepStatus.approved)
        return {**state, "dispatch": True}

    async def _node_dispatch(self, state: _GraphState) -> _GraphState:
        """Run the approved step through the command runner."""
        run = self._run_for(state)
        step = run.plan.steps[state["idx"]]
        await self._set_step(run, step, StepStatus.running)

        async def _notice(event_type: PlanEventType, payload: Dict[str, Any]) -> None:
            await self._emit(event_type, run.plan, step=step, payload=payload)

        watch = OutputWatch(
            _notice,
            warning_after=self._deps.idle_warning_seconds,
            stalled_after=self._deps.idle_stalled_seconds,
        )

        async def _on_output(text: str) -> None:
            await self._emit(PlanEventType.step_output, run.plan, step=step, payload={"text": text})
            await watch.feed(text)

        watch.start()
        try:
            cancelled, result = await self._until_cancelled(
                run,
                self._deps.runner.run_command(step.command, timeout=self._deps.command_timeout, on_output=_on_output),
            )
        except ConnectionLostError as e:
            step.output = str(e)
            await self._set_step(run, step, StepStatus.failed)
            return {**state, "outcome": PlanStatus.failed.value, "error": f"connection lost: {e}"}
        finally:
            await watch.stop()

        if cancelled:
            aborted = run.abort_reason is not None
            await self._set_step(run, step, StepStatus.failed if aborted else StepStatus.cancelled)
            return self._stopped(run, state)

        step.output = result.output
        step.exit_code = result.exit_code
        if result.succeeded:
            await self._set_step(run, step, StepStatus.succeeded)
            return {**state, "idx": state["idx"] + 1}

        error = CommandExecutionError(result.exit_code, result.output, timed_out=result.timed_out)
        await self._set_step(run, step, StepStatus.failed)
        return {**state, "outcome": PlanStatus.failed.value, "error": str(error)}

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        run = self._run_for(state)
        outcome = PlanStatus(state["outcome"] or PlanStatus.failed.value)
        await self._finalize(run, outcome, state.get("error"))
        return state

    def _route_after_boundary(self, state: _GraphState) -> str:
        return "finish" if state["outcome"] else "gate"

    def _route_after_gate(self, state: _GraphState) -> str:
        if state["outcome"]:
            return "finish"
        return "dispatch" if state["dispatch"] else "continue"

    def _route_after_dispatch(self, state: _GraphState) -> str:
        return "finish" if state["outcome"] else "continue"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_for(self, state: _GraphState) -> ActiveRun:
        run = self._active
        if run is None or run.plan.id != state["plan_id"]:
            raise PlanStateError(f"plan {state['plan_id']} is not the active plan")
        return run

    def _require_active(self) -> ActiveRun:
        run = self._active
        if run is None or run.plan.status in TERMINAL_PLAN_STATUSES:
            raise PlanStateError("no plan is executing")
        return run

    def _stopped(self, run: ActiveRun, state: _GraphState) -> _GraphState:
        if run.abort_reason is not None:
            return {**state, "dispatch": False, "outcome": PlanStatus.failed.value, "error": run.abort_reason}
        return {**state, "dispatch": False, "outcome": PlanStatus.cancelled.value}

    async def _until_cancelled(self, run: ActiveRun, awaitable: Awaitable[Any]) -> Tuple[bool, Any]:
        """Await ``awaitable`` unless the plan is cancelled first.

        Returns ``(True, None)`` on cancel, after the awaited work has been
        cancelled and has unwound; otherwise ``(False, result)``. Exceptions of
        the awaited work propagate.
        """
        work = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(run.cancel_event.wait())
        try:
            await asyncio.wait({work, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
        if work.done():
            return False, work.result()
        work.cancel()
        await asyncio.wait({work})
        return True, None

    async def _finalize(self, run: ActiveRun, outcome: PlanStatus, error: Optional[str]) -> None:
        plan = run.plan
        if plan.status in TERMINAL_PLAN_STATUSES:
            return
        for step in plan.steps:
            if step.status in (StepStatus.running, StepStatus.awaiting_approval):
                step.status = StepStatus.failed if outcome == PlanStatus.failed else StepStatus.cancelled
        if outcome == PlanStatus.cancelled:
            self._cancel_pending_steps(plan)
        plan.status = outcome
        if outcome == PlanStatus.failed:
            logger.warning("Plan %s failed: %s", plan.id, error)
        else:
            logger.info("Plan %s %s", plan.id, outcome.value)
        await self._emit(_OUTCOME_EVENTS[outcome], plan, payload={"error": error} if error else None)

    @staticmethod
    def _cancel_pending_steps(plan: ExecutionPlan) -> None:
        for step in plan.steps:
            if step.status == StepStatus.pending:
                step.status = StepStatus.cancelled

    async def _set_step(self, run: ActiveRun, step: PlanStep, status: StepStatus) -> None:
        step.status = status
        logger.debug("Plan %s step %s -> %s", run.plan.id, step.id, status.value)
        await self._emit(PlanEventType.step_update, run.plan, step=step)

    async def _emit(
        self,
        event_type: PlanEventType,
        plan: ExecutionPlan,
        *,
        step: Optional[PlanStep] = None,
        approval: Optional[ApprovalRequest] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        sink = self._deps.sink
        if sink is None:
            return
        event = PlanEvent(
            type=event_type,
            plan_id=plan.id,
            plan=plan.model_copy(deep=True),
            step=step.model_copy(deep=True) if step is not None else None,
            approval=approval,
            payload=payload or {},
        )
        try:
            await sink(event)
        except Exception:
            logger.exception("Plan event sink raised on %s", event_type.value)
