"""
Observability module - Logging, Metrics, and Tracing.
"""

from launch_studio.observability.logging import get_logger, log_context, setup_logging
from launch_studio.observability.metrics import metrics
from launch_studio.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
