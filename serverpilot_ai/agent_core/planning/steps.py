from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ModelOutput(BaseModel):
    # Model output uses camelCase keys and may carry fields we do not use.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RawPlanStep(_ModelOutput):
    description: str = ""
    command: str
    risk_level: Optional[str] = Field(default=None, alias="riskLevel")
    explanation: Optional[str] = None
    expected_output: Optional[str] = Field(default=None, alias="expectedOutput")
    verification_command: Optional[str] = Field(default=None, alias="verificationCommand")


class RawPlan(_ModelOutput):
    type: Literal["plan"] = "plan"
    goal: str
    success_criteria: List[str] = Field(default_factory=list, alias="successCriteria")
    steps: List[RawPlanStep]
    estimated_time: Optional[str] = Field(default=None, alias="estimatedTime")
    rollback_plan: Optional[List[str]] = Field(default=None, alias="rollbackPlan")
