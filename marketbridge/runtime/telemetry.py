"""Structured logging for dispatch, stream and order-tracking lifecycle.

Each helper emits one log record whose message is a stable event name and
whose fields travel in ``extra`` so log processors can index them.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def log_dispatch_attempt(
    *,
    venue: Any,
    method: str,
    path: str,
    endpoint_class: Any,
    attempt: int,
    status: int | None = None,
    latency_ms: float | None = None,
) -> None:
    """Log one transport attempt made by the dispatcher."""
    logger.debug(
        "dispatch_attempt",
        extra={
            "venue": _value(venue),
            "method": method,
            "path": path,
            "endpoint_class": _value(endpoint_class),
            "attempt": attempt,
            "status": status,
            "latency_ms": latency_ms,
        },
    )


def log_dispatch_retry(
    *,
    venue: Any,
    method: str,
    path: str,
    attempt: int,
    delay: float,
    error: BaseException,
) -> None:
    """Log a transient failure that will be retried after ``delay`` seconds."""
    logger.warning(
        "dispatch_retry",
        extra={
            "venue": _value(venue),
            "method": method,
            "path": path,
            "attempt": attempt,
            "delay": round(delay, 3),
            "error_type": type(error).__name__,
            "error": str(error),
        },
    )


def log_reauthentication(*, venue: Any, scheme: Any, path: str) -> None:
    logger.info(
        "dispatch_reauthenticate",
        extra={"venue": _value(venue), "scheme": _value(scheme), "path": path},
    )


def log_stream_state(*, key: str, previous: Any, current: Any, attempt: int = 0) -> None:
    logger.info(
        "stream_state_changed",
        extra={
            "subscription": key,
            "previous": _value(previous),
            "current": _value(current),
            "attempt": attempt,
        },
    )


def log_stream_resync(
    *,
    key: str,
    reason: str,
    last_sequence: int | None,
    received_sequence: int | None,
    dropped_deltas: int = 0,
) -> None:
    """Log a snapshot resynchronization and why it was triggered."""
    logger.warning(
        "stream_resync",
        extra={
            "subscription": key,
            "reason": reason,
            "last_sequence": last_sequence,
            "received_sequence": received_sequence,
            "dropped_deltas": dropped_deltas,
        },
    )


def log_order_transition(
    *,
    client_order_id: str,
    order_id: str | None,
    previous: Any,
    current: Any,
    filled_size: Any,
    source: Any,
) -> None:
    logger.info(
        "order_transition",
        extra={
            "client_order_id": client_order_id,
            "order_id": order_id,
            "previous": _value(previous),
            "current": _value(current),
            "filled_size": str(filled_size),
            "source": _value(source),
        },
    )


def log_reconciliation_warning(
    *,
    client_order_id: str,
    current: Any,
    reported: Any,
    source: Any,
    message: str,
) -> None:
    """Log a conflicting terminal signal for an order."""
    logger.warning(
        "order_reconciliation_conflict",
        extra={
            "client_order_id": client_order_id,
            "current": _value(current),
            "reported": _value(reported),
            "source": _value(source),
            "detail": message,
        },
    )
