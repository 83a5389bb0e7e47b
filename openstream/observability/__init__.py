"""
Observability module - Logging, Metrics, and Tracing.
"""

from openstream.observability.logging import get_logger, log_context, setup_logging
from openstream.observability.metrics import metrics
from openstream.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
