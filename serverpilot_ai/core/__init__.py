"""
Core utilities for ServerPilot-AI.

This package provides logging configuration and the shared error taxonomy.
"""

from serverpilot_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
