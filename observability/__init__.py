"""Logging, operation metrics and failure diagnostics for espcli.

    from observability import get_logger, get_metrics

    logger = get_logger("operations")
    logger.info("Build started", operation_id=op_id)
    get_metrics(metrics_file).record_operation("build", op_id, 5.2, True)
"""

from functools import cache
from pathlib import Path

from .logger import ESPLogger, configure_logging


@cache
def get_logger(name: str) -> ESPLogger:
    """Shared ``ESPLogger`` for ``name``, placed below the ``espcli`` logger."""
    return ESPLogger(name)


@cache
def get_metrics(metrics_file: Path | None = None) -> "OperationMetrics":
    """Shared metrics collector, one per persistence file."""
    from .metrics import OperationMetrics

    return OperationMetrics(metrics_file)


@cache
def get_diagnostics() -> "DiagnosticEngine":
    from .diagnostics import DiagnosticEngine

    return DiagnosticEngine()


def reset() -> None:
    """Drop the shared instances so the next call builds fresh ones."""
    get_logger.cache_clear()
    get_metrics.cache_clear()
    get_diagnostics.cache_clear()


__all__ = [
    "ESPLogger",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "get_diagnostics",
    "reset",
]
