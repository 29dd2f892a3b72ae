from __future__ import annotations

import logging
from typing import Optional

from ..schemas.domain import ExecutionMode, PlanStep, RiskAssessment, RiskLevel
from .models import (
    ALL_DECISIONS,
    BLOCKED_DECISIONS,
    GATING_TABLE,
    GateAction,
    GateDecision,
    RiskPolicy,
)
from .risk_classifier import RiskClassifier

logger = logging.getLogger(__name__)


class GlobalPolicy:
    """
    Central policy facade used by the planner and the plan engine.

    It owns the command ``RiskClassifier`` and the mode gating table, and
    answers two questions:

    - how risky is this command (``classify``)
    - may this step run without a human decision (``gate``)
    """

    def __init__(self, risk_policy: Optional[RiskPolicy] = None) -> None:
        """
        Initialize the global policy.

        Args:
            risk_policy: User whitelist/blacklist overrides for the classifier.
        """
        self._classifier = RiskClassifier(risk_policy)

    @property
    def classifier(self) -> RiskClassifier:
        return self._classifier

    def classify(self, command: str) -> RiskAssessment:
        """Classify a shell command."""
        return self._classifier.classify(command)

    def gate(self, step: PlanStep, mode: ExecutionMode) -> GateDecision:
        """
        Look the step up in the gating table.

        The lookup uses only ``(mode, step.risk_assessment.level)``. ``blocked``
        always requires a decision, and that decision may never be ``approve``.
        """
        risk = step.risk_assessment.level
        action = GATING_TABLE[mode][risk]
        allowed = BLOCKED_DECISIONS if risk == RiskLevel.blocked else ALL_DECISIONS
        decision = GateDecision(
            risk=risk,
            require_decision=action == GateAction.decision,
            allowed_decisions=allowed,
        )
        logger.debug(
            "gate step=%s mode=%s risk=%s require_decision=%s",
            step.id,
            mode.value,
            risk.value,
            decision.require_decision,
        )
        return decision
