"""Turn model output into a validated ``ExecutionPlan``.

The model embeds its plan in a fenced ``json`` block. ``extract_plan_json``
finds it, and ``PlanParser`` validates it and reconciles every step's risk with
the command classifier, keeping the stricter of the two ratings.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ...core.errors import PlanValidationError
from ..policy.global_policy import GlobalPolicy
from ..policy.models import max_risk
from ..schemas.domain import ExecutionPlan, PlanStep, RiskAssessment, RiskLevel
from .steps import RawPlan, RawPlanStep

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)\s*```")

DEFAULT_RISK_LEVEL = RiskLevel.caution


def extract_plan_json(content: str) -> Optional[Dict[str, Any]]:
    """Return the first ```json block whose ``type`` is ``plan``, else ``None``.

    Blocks that are not valid JSON or not plans are skipped; a reply without a
    plan is an ordinary conversational answer.
    """
    for match in _JSON_BLOCK.finditer(content):
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Skipping json block that does not parse")
            continue
        if isinstance(data, dict) and data.get("type") == "plan":
            return data
    return None


class PlanParser:
    """Validate raw plan dictionaries and build ``ExecutionPlan`` objects."""

    def __init__(self, policy: Optional[GlobalPolicy] = None) -> None:
        self._policy = policy or GlobalPolicy()

    def parse_content(self, content: str) -> Optional[ExecutionPlan]:
        """Extract and parse a plan from a model reply.

        Returns ``None`` when the reply carries no plan. Raises
        ``PlanValidationError`` when it carries a malformed one.
        """
        raw = extract_plan_json(content)
        if raw is None:
            return None
        return self.parse(raw)

    def parse(self, raw: Dict[str, Any]) -> ExecutionPlan:
        try:
            plan = RawPlan.model_validate(raw)
        except ValidationError as e:
            raise PlanValidationError(f"malformed plan: {e.errors()[0]['msg']}") from e

        if not plan.goal.strip():
            raise PlanValidationError("plan has no goal")
        if not plan.steps:
            raise PlanValidationError("plan has no steps")

        steps = [self._build_step(i, s) for i, s in enumerate(plan.steps, start=1)]
        rollback = [c for c in (plan.rollback_plan or []) if c.strip()] or None

        result = ExecutionPlan(
            goal=plan.goal,
            steps=steps,
            success_criteria=plan.success_criteria,
            rollback_plan=rollback,
            estimated_time=plan.estimated_time,
        )
        logger.info("Parsed plan %s with %d steps", result.id, len(steps))
        return result

    def _build_step(self, index: int, raw: RawPlanStep) -> PlanStep:
        command = raw.command.strip()
        if not command:
            raise PlanValidationError(f"step {index} has an empty command")

        if raw.risk_level is None:
            declared = DEFAULT_RISK_LEVEL
        else:
            try:
                declared = RiskLevel(raw.risk_level.strip().lower())
            except ValueError:
                raise PlanValidationError(f"step {index} has unknown risk level {raw.risk_level!r}") from None

        classified = self._policy.classify(command)
        level = max_risk([declared, classified.level])
        if level != declared:
            logger.debug("step %d risk raised from %s to %s by classifier", index, declared.value, level.value)

        assessment = RiskAssessment(
            level=level,
            warning_message=classified.warning_message,
            category=classified.category,
            reason=classified.reason,
        )
        return PlanStep(
            description=raw.description or command,
            command=command,
            explanation=raw.explanation,
            expected_output=raw.expected_output,
            verification_command=raw.verification_command,
            risk_assessment=assessment,
        )
