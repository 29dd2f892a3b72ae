"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the client and the server.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from serverpilot_ai.agent_core.abstraction.base import ApiKeyValidation
from serverpilot_ai.agent_core.runtime.models import RollbackStepResult
from serverpilot_ai.agent_core.schemas.domain import ExecutionMode, ExecutionPlan, Usage
from serverpilot_ai.remote.os_detector import OSInfo

# =====================================================================
# Session
# =====================================================================


class SessionConnect(BaseModel):
    """Schema for opening the remote shell session."""

    host: Optional[str] = Field(
        default=None,
        description="Remote host to connect to over ssh. Omit together with `local=true` for a local shell.",
        examples=["10.0.0.12"],
    )
    port: int = Field(default=22, description="SSH port.", examples=[22])
    username: Optional[str] = Field(default=None, description="Remote user name.", examples=["deploy"])
    identity_file: Optional[str] = Field(default=None, description="Path to the private key used by ssh.")
    ssh_options: List[str] = Field(
        default_factory=list,
        description="Extra ssh `-o Key=Value` options.",
        examples=[["StrictHostKeyChecking=accept-new"]],
    )
    local: bool = Field(default=False, description="Open a local shell instead of an ssh session.")
    cols: int = Field(default=120, ge=1, description="Initial terminal width.")
    rows: int = Field(default=40, ge=1, description="Initial terminal height.")


class SessionStatus(BaseModel):
    """Current state of the remote shell session."""

    connected: bool = Field(..., description="Whether a session is open.")
    os_info: Optional[OSInfo] = Field(default=None, description="Detected operating system of the remote host.")
    busy: bool = Field(default=False, description="Whether a programmatic command currently owns the session.")


class SessionWrite(BaseModel):
    """Raw keystrokes typed into the interactive terminal."""

    data: str = Field(..., description="Text to write to the terminal.", examples=["ls -la\n"])


class SessionResize(BaseModel):
    cols: int = Field(..., ge=1, description="Terminal width in columns.")
    rows: int = Field(..., ge=1, description="Terminal height in rows.")


# =====================================================================
# Chat
# =====================================================================


class ChatRequest(BaseModel):
    """Schema for sending a goal to the model."""

    content: str = Field(
        ...,
        min_length=1,
        description="The user's goal or question in natural language.",
        examples=["Install nginx and make sure it starts on boot."],
    )
    mode: Optional[ExecutionMode] = Field(
        default=None,
        description="Execution mode described to the model; the configured default when omitted.",
    )


class ChatReply(BaseModel):
    """Blocking reply to a goal."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., description="The model's full reply text.")
    has_plan: bool = Field(..., alias="hasPlan", description="Whether the reply contained an execution plan.")
    plan: Optional[ExecutionPlan] = Field(default=None, description="The plan loaded into the engine, if any.")
    usage: Usage = Field(..., description="Token usage of this reply.")


class TokenUsage(BaseModel):
    """Token usage accumulated over the chat session."""

    input_tokens: int
    output_tokens: int
    total_tokens: int


class ApiKeyCheck(BaseModel):
    api_key: str = Field(..., min_length=1, description="The provider API key to check.")


class ApiKeyCheckResult(BaseModel):
    result: ApiKeyValidation = Field(..., description="valid, invalid or indeterminate.")
    accepted: bool = Field(..., description="Whether the key should be accepted (indeterminate counts as accepted).")


# =====================================================================
# Plans
# =====================================================================


class PlanExecute(BaseModel):
    mode: Optional[ExecutionMode] = Field(
        default=None,
        description="Gating policy for this execution; the configured default when omitted.",
    )


class DecisionResult(BaseModel):
    """Outcome of an approve/reject/skip request."""

    accepted: bool = Field(
        ..., description="False when the step was not awaiting a decision (late or duplicate decision)."
    )
    plan: ExecutionPlan


class RollbackResult(BaseModel):
    plan_id: str
    completed: bool = Field(..., description="Whether every rollback command succeeded.")
    results: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_results(cls, plan_id: str, total: int, results: List[RollbackStepResult]) -> "RollbackResult":
        return cls(
            plan_id=plan_id,
            completed=len(results) == total and all(r.succeeded for r in results),
            results=[
                {
                    "index": r.index,
                    "command": r.command,
                    "exit_code": r.exit_code,
                    "output": r.output,
                    "timed_out": r.timed_out,
                }
                for r in results
            ],
        )


# =====================================================================
# SSE helper events
# =====================================================================


class KeepAliveEvent(BaseModel):
    """Keep-alive event for idle streams.

    Sent periodically when no events are available to prevent client timeout.
    """

    comment: str = Field(
        default="keep-alive",
        description="A fixed comment indicating this is a keep-alive message.",
        examples=["keep-alive"],
    )


class ErrorEvent(BaseModel):
    """Error event for stream failures.

    Sent when an error occurs during event streaming.
    """

    error: str = Field(
        ...,
        description="The error message or error type.",
        examples=["backend error (500): overloaded", "Connection lost"],
    )
    details: Optional[str] = Field(
        default=None,
        description="Additional details or context about the error.",
    )


class StreamChunkEvent(BaseModel):
    text: str


class StreamEndEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str
    has_plan: bool = Field(..., alias="hasPlan")
    plan_id: Optional[str] = Field(default=None, alias="planId")
    usage: Usage
