"""
Observability module - Logging, Metrics, and Tracing.
"""

from topup.observability.logging import get_logger, log_context, setup_logging
from topup.observability.metrics import metrics
from topup.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
