"""Agent core: provider gateway, planning, risk policy and the plan engine."""
