"""
Plan Execution API Endpoints.

This module drives the plan engine: starting execution, delivering approval
decisions, pausing, resuming, cancelling, rolling back, and streaming the
engine's events.

Includes:
- Plan retrieval
- Execution control (execute, pause, resume, cancel, rollback)
- Step decisions (approve, reject, skip)
- Real-time plan events via Server-Sent Events (SSE)
"""

from typing import List

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from serverpilot_ai.agent_core.schemas.domain import ApprovalDecision, ExecutionPlan
from serverpilot_ai.core.errors import PlanStateError
from serverpilot_ai.core.logging_config import get_logger
from serverpilot_ai.server.api.v1.events import sse_message
from serverpilot_ai.server.schemas import DecisionResult, PlanExecute, RollbackResult
from serverpilot_ai.server.services.deps import WorkspaceDep

logger = get_logger(__name__)
router = APIRouter()


def _require_active(workspace, plan_id: str) -> None:
    # Raises PlanNotFoundError for unknown ids.
    workspace.engine.get_plan(plan_id)
    active = workspace.engine.active_plan
    if active is None or active.id != plan_id:
        raise PlanStateError(f"plan {plan_id} is not executing")


@router.get(
    "/events",
    summary="Stream Plan Events",
    description="Subscribe to a Server-Sent Events (SSE) stream of plan engine events.",
    response_description="A stream of event objects.",
    responses={
        200: {
            "description": "SSE stream established",
            "content": {"text/event-stream": {"example": 'event: keep-alive\ndata: {"comment": "keep-alive"}\n\n'}},
        }
    },
)
async def stream_plan_events(request: Request, workspace: WorkspaceDep):
    """
    Stream plan events via Server-Sent Events (SSE).

    Event names follow the plan event types (`generated`, `plan-update`,
    `step-update`, `step-output`, `prompt-detected`, `idle-warning`,
    `idle-stalled`, `approval-needed`, `complete`, `cancelled`, `failed`,
    `rollback-update`). Each payload mirrors the `PlanEvent` schema
    and carries a snapshot of the plan.
    """
    logger.info("Starting plan event stream")

    async def event_generator():
        try:
            async for event in workspace.plan_events.stream():
                if await request.is_disconnected():
                    logger.info("Client disconnected from plan event stream")
                    break
                yield sse_message(getattr(getattr(event, "type", None), "value", "message"), event)
        except Exception as e:
            logger.error(f"Error in plan event stream: {e}", exc_info=True)
            yield sse_message("error", {"error": str(e)})

    return EventSourceResponse(event_generator())


@router.get(
    "/",
    response_model=List[ExecutionPlan],
    summary="List Plans",
    description="Retrieve every plan generated in this session.",
    response_description="A list of plans.",
)
async def list_plans(workspace: WorkspaceDep):
    return workspace.engine.list_plans()


@router.get(
    "/{plan_id}",
    response_model=ExecutionPlan,
    summary="Get Plan",
    description="Retrieve a plan and the current status of its steps.",
    response_description="The plan object.",
    responses={404: {"description": "Plan not found"}},
)
async def get_plan(plan_id: str, workspace: WorkspaceDep):
    """
    Get plan details.

    Returns the plan with each step's status, output and exit code.
    """
    return workspace.engine.get_plan(plan_id)


@router.post(
    "/{plan_id}/execute",
    response_model=ExecutionPlan,
    status_code=202,
    summary="Execute Plan",
    description="Start executing an idle plan in the given execution mode.",
    response_description="The plan, now running.",
    responses={404: {"description": "Plan not found"}, 409: {"description": "Plan is not idle or another plan is running"}},
)
async def execute_plan(plan_id: str, body: PlanExecute, workspace: WorkspaceDep):
    """
    Execute a plan.

    - **mode**: `supervised` asks for a decision on every non-safe step;
      `autonomous` only on dangerous and blocked steps.

    Execution proceeds in the background; follow it on `/plans/events`.
    """
    mode = body.mode or workspace.default_mode
    return await workspace.engine.execute(plan_id, mode)


@router.post(
    "/{plan_id}/steps/{step_id}/{decision}",
    response_model=DecisionResult,
    summary="Decide Step",
    description="Approve, reject or skip the step that is awaiting a decision.",
    response_description="Whether the decision was consumed, and the plan.",
    responses={
        404: {"description": "Plan not found"},
        409: {"description": "The decision is not allowed for this step"},
    },
)
async def decide_step(plan_id: str, step_id: str, decision: ApprovalDecision, workspace: WorkspaceDep):
    """
    Deliver a decision.

    A decision for a step that is not currently awaiting one is ignored and
    reported with `accepted: false`. Blocked steps accept only `reject` or `skip`.
    """
    plan = workspace.engine.get_plan(plan_id)
    accepted = False
    active = workspace.engine.active_plan
    if active is not None and active.id == plan_id:
        accepted = workspace.engine.decide(step_id, decision)
    else:
        logger.info(f"Ignoring {decision.value} for plan {plan_id}: plan is not executing")
    return DecisionResult(accepted=accepted, plan=plan)


@router.post(
    "/{plan_id}/pause",
    response_model=ExecutionPlan,
    summary="Pause Plan",
    description="Pause the running plan at the next step boundary.",
    response_description="The paused plan.",
    responses={404: {"description": "Plan not found"}, 409: {"description": "Plan is not running"}},
)
async def pause_plan(plan_id: str, workspace: WorkspaceDep):
    """
    Pause a plan.

    A command already executing runs to completion; no further step starts until resumed.
    """
    _require_active(workspace, plan_id)
    return await workspace.engine.pause()


@router.post(
    "/{plan_id}/resume",
    response_model=ExecutionPlan,
    summary="Resume Plan",
    description="Resume a paused plan.",
    response_description="The running plan.",
    responses={404: {"description": "Plan not found"}, 409: {"description": "Plan is not paused"}},
)
async def resume_plan(plan_id: str, workspace: WorkspaceDep):
    _require_active(workspace, plan_id)
    return await workspace.engine.resume()


@router.post(
    "/{plan_id}/cancel",
    response_model=ExecutionPlan,
    summary="Cancel Plan",
    description="Cancel a plan that has not finished.",
    response_description="The cancelled plan.",
    responses={404: {"description": "Plan not found"}, 409: {"description": "Plan already finished"}},
)
async def cancel_plan(plan_id: str, workspace: WorkspaceDep):
    """
    Cancel a plan.

    Interrupts the executing command, abandons a pending decision and marks
    every pending step cancelled. The chat stream is not affected.
    """
    return await workspace.engine.cancel(plan_id)


@router.post(
    "/{plan_id}/rollback",
    response_model=RollbackResult,
    summary="Roll Back Plan",
    description="Run the plan's rollback commands in order, stopping at the first failure.",
    response_description="The result of each rollback command that ran.",
    responses={
        404: {"description": "Plan not found"},
        409: {"description": "Plan is not failed or cancelled, or has no rollback plan"},
    },
)
async def rollback_plan(plan_id: str, workspace: WorkspaceDep):
    """
    Roll back a plan.

    Allowed only for failed or cancelled plans that define a rollback plan.
    Progress is reported as `rollback-update` events.
    """
    plan = workspace.engine.get_plan(plan_id)
    results = await workspace.engine.rollback(plan_id)
    return RollbackResult.from_results(plan_id, len(plan.rollback_plan or []), results)
