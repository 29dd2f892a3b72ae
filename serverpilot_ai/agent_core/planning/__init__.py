"""Planning: prompts for the chat backend and parsing of the plans it returns."""

from .parser import PlanParser, extract_plan_json
from .prompts import BASE_SYSTEM_PROMPT, build_system_prompt

__all__ = [
    "BASE_SYSTEM_PROMPT",
    "PlanParser",
    "build_system_prompt",
    "extract_plan_json",
]
