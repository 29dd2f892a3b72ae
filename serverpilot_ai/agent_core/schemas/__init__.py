"""Schemas and DTOs for the agent core."""

from .domain import (
    ApprovalDecision,
    ApprovalRequest,
    ChatMessage,
    ChatResponse,
    ChatRole,
    ExecutionMode,
    ExecutionPlan,
    PlanEvent,
    PlanEventType,
    PlanStatus,
    PlanStep,
    RiskAssessment,
    RiskLevel,
    StepStatus,
    StopReason,
    Usage,
)

__all__ = [
    "ApprovalDecision",
    "ApprovalRequest",
    "ChatMessage",
    "ChatResponse",
    "ChatRole",
    "ExecutionMode",
    "ExecutionPlan",
    "PlanEvent",
    "PlanEventType",
    "PlanStatus",
    "PlanStep",
    "RiskAssessment",
    "RiskLevel",
    "StepStatus",
    "StopReason",
    "Usage",
]
