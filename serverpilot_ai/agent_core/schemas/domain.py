from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class ChatRole(str, Enum):
    user = "user"
    assistant = "assistant"


class StopReason(str, Enum):
    end_turn = "end_turn"
    max_tokens = "max_tokens"
    stop_sequence = "stop_sequence"
    tool_use = "tool_use"
    content_filter = "content_filter"
    unknown = "unknown"


class RiskLevel(str, Enum):
    safe = "safe"
    caution = "caution"
    dangerous = "dangerous"
    blocked = "blocked"


class ExecutionMode(str, Enum):
    supervised = "supervised"
    autonomous = "autonomous"


class ApprovalDecision(str, Enum):
    approve = "approve"
    reject = "reject"
    skip = "skip"


class PlanStatus(str, Enum):
    idle = "idle"
    running = "running"
    paused = "paused"
    completed = "completed"
    cancelled = "cancelled"
    failed = "failed"


class StepStatus(str, Enum):
    pending = "pending"
    auto_approved = "auto-approved"
    awaiting_approval = "awaiting-approval"
    approved = "approved"
    rejected = "rejected"
    skipped = "skipped"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


class PlanEventType(str, Enum):
    generated = "generated"
    plan_update = "plan-update"
    step_update = "step-update"
    step_output = "step-output"
    prompt_detected = "prompt-detected"
    idle_warning = "idle-warning"
    idle_stalled = "idle-stalled"
    approval_needed = "approval-needed"
    complete = "complete"
    cancelled = "cancelled"
    failed = "failed"
    rollback_update = "rollback-update"


TERMINAL_PLAN_STATUSES = frozenset({PlanStatus.completed, PlanStatus.cancelled, PlanStatus.failed})

TERMINAL_STEP_STATUSES = frozenset(
    {StepStatus.succeeded, StepStatus.failed, StepStatus.rejected, StepStatus.skipped, StepStatus.cancelled}
)

ACTIVE_STEP_STATUSES = frozenset({StepStatus.running, StepStatus.awaiting_approval})


class ChatMessage(BaseSchema):
    role: ChatRole
    content: str

    model_config = BaseSchema.model_config | {"frozen": True}


class Usage(BaseSchema):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class ChatResponse(BaseSchema):
    content: str
    stop_reason: StopReason = StopReason.unknown
    usage: Usage = Field(default_factory=Usage)
    model: Optional[str] = None


class RiskAssessment(BaseSchema):
    level: RiskLevel
    warning_message: Optional[str] = None
    category: Optional[str] = None
    reason: Optional[str] = None


class PlanStep(BaseSchema):
    id: str = Field(default_factory=_new_id)
    description: str
    command: str
    explanation: Optional[str] = None
    expected_output: Optional[str] = None
    verification_command: Optional[str] = None
    risk_assessment: RiskAssessment
    status: StepStatus = StepStatus.pending
    output: Optional[str] = None
    exit_code: Optional[int] = None


class ExecutionPlan(BaseSchema):
    id: str = Field(default_factory=_new_id)
    goal: str
    steps: List[PlanStep]
    success_criteria: List[str] = Field(default_factory=list)
    rollback_plan: Optional[List[str]] = None
    estimated_time: Optional[str] = None
    status: PlanStatus = PlanStatus.idle
    mode: Optional[ExecutionMode] = None
    created_at: datetime = Field(default_factory=_utc_now)

    def step(self, step_id: str) -> Optional[PlanStep]:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None


class ApprovalRequest(BaseSchema):
    """Payload of an ``approval-needed`` event."""

    step_id: str
    command: str
    risk_level: RiskLevel
    warning_message: Optional[str] = None
    allowed_decisions: List[ApprovalDecision]


class PlanEvent(BaseSchema):
    id: str = Field(default_factory=_new_id)
    type: PlanEventType
    plan_id: str
    plan: Optional[ExecutionPlan] = None
    step: Optional[PlanStep] = None
    approval: Optional[ApprovalRequest] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
