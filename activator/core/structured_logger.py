"""
Structured logging for activation lifecycle events.

Single contract for lifecycle logs:
- component
- operation
- correlation_id (optional, the activation run id)
- outcome
- duration_ms (optional, omitted if None)
- reason (optional)

Never log full license keys or bearer tokens; use mask_key().
"""
from typing import Optional

from logging import Logger


def mask_key(key: Optional[str]) -> str:
    """Return the first five characters of a key followed by an ellipsis."""
    if not key:
        return "<none>"
    return f"{key[:5]}..."


def log_event(
    logger: Logger,
    *,
    component: str,
    operation: str,
    correlation_id: Optional[str] = None,
    outcome: str,
    duration_ms: Optional[int] = None,
    reason: Optional[str] = None,
    level: str = "info",
    message: Optional[str] = None,
) -> None:
    """
    Emit structured log event.

    Args:
        logger: Logger instance
        component: Component name (e.g., "activation", "bundle", "gate")
        operation: Operation name (e.g., "fetching_product", "redeem_key")
        correlation_id: Activation run identifier (optional)
        outcome: Outcome (e.g., "entered", "success", "failed", "cancelled")
        duration_ms: Duration in milliseconds (omitted if None)
        reason: Short non-PII explanation (optional)
        level: Log level ("info", "warning", "error", "critical", "debug")
        message: Optional override message (defaults to operation)
    """
    extra: dict = {
        "component": component,
        "operation": operation,
        "outcome": outcome,
    }
    if correlation_id is not None:
        extra["correlation_id"] = str(correlation_id)
    if duration_ms is not None:
        extra["duration_ms"] = duration_ms
    if reason is not None:
        extra["reason"] = reason

    msg = message or f"{component} {operation} outcome={outcome}"
    if reason is not None and message is None:
        msg = f"{msg} reason={reason}"
    log_method = getattr(logger, level.lower(), logger.info)
    log_method(msg, extra=extra)
