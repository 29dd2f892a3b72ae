"""Policy subsystem for command risk and approval gating.

Components
----------

- ``RiskClassifier``: rates a shell command ``safe``, ``caution``,
  ``dangerous`` or ``blocked`` from built-in patterns and the user's
  ``RiskPolicy`` overrides.
- ``GATING_TABLE``: maps ``(ExecutionMode, RiskLevel)`` to ``auto`` or
  ``decision``.

``GlobalPolicy`` aggregates both and is what the planner and the engine use.
"""

from .global_policy import GlobalPolicy
from .models import (
    GATING_TABLE,
    GateAction,
    GateDecision,
    RiskPolicy,
    max_risk,
)
from .risk_classifier import RiskClassifier

__all__ = [
    "GATING_TABLE",
    "GateAction",
    "GateDecision",
    "GlobalPolicy",
    "RiskClassifier",
    "RiskPolicy",
    "max_risk",
]
