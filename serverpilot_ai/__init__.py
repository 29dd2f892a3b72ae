"""
ServerPilot-AI.

Turns a natural-language maintenance goal into a risk-annotated plan of shell
commands and executes it against a live remote shell under human oversight.
"""

__version__ = "0.1.0"
