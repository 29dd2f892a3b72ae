from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import ApprovalDecision, ExecutionMode, RiskLevel


class GateAction(str, Enum):
    """
    Outcome of looking a step up in the gating table.

    Attributes:
        auto: The step runs without asking anyone.
        decision: Dispatch waits for an explicit ``ApprovalDecision``.
    """
    auto = "auto"
    decision = "decision"


GATING_TABLE: Dict[ExecutionMode, Dict[RiskLevel, GateAction]] = {
    ExecutionMode.supervised: {
        RiskLevel.safe: GateAction.auto,
        RiskLevel.caution: GateAction.decision,
        RiskLevel.dangerous: GateAction.decision,
        RiskLevel.blocked: GateAction.decision,
    },
    ExecutionMode.autonomous: {
        RiskLevel.safe: GateAction.auto,
        RiskLevel.caution: GateAction.auto,
        RiskLevel.dangerous: GateAction.decision,
        RiskLevel.blocked: GateAction.decision,
    },
}

ALL_DECISIONS: FrozenSet[ApprovalDecision] = frozenset(ApprovalDecision)

# A blocked step can be refused or stepped over, never run.
BLOCKED_DECISIONS: FrozenSet[ApprovalDecision] = frozenset({ApprovalDecision.reject, ApprovalDecision.skip})

_RISK_ORDER = {
    RiskLevel.safe: 0,
    RiskLevel.caution: 1,
    RiskLevel.dangerous: 2,
    RiskLevel.blocked: 3,
}


def risk_rank(level: RiskLevel) -> int:
    return _RISK_ORDER[level]


def max_risk(levels: Iterable[RiskLevel]) -> RiskLevel:
    """Return the most severe level, ``safe`` for an empty iterable."""
    result = RiskLevel.safe
    for level in levels:
        if _RISK_ORDER[level] > _RISK_ORDER[result]:
            result = level
    return result


class RiskPolicy(BaseSchema):
    """
    User overrides applied before the built-in command patterns.

    Entries are regular expressions; an entry that does not compile is matched
    as a plain substring.
    """
    whitelist: List[str] = Field(
        default_factory=list,
        description="Commands matching any of these are classified as safe.",
    )
    blacklist: List[str] = Field(
        default_factory=list,
        description="Commands matching any of these are classified as blocked. Checked before the whitelist.",
    )


@dataclass(frozen=True)
class GateDecision:
    """
    Result of gating one plan step under an execution mode.

    Attributes:
        risk: The risk level the lookup used.
        require_decision: Whether dispatch must wait for a human decision.
        allowed_decisions: Decisions the parked step will accept.
    """
    risk: RiskLevel
    require_decision: bool
    allowed_decisions: FrozenSet[ApprovalDecision]
