"""Timing helpers for store and ingestion hot paths.

Slow loads, flushes and persist phases are logged at WARNING with their
throughput so an operator can tell a large keyspace from a slow backend.
"""

import logging
import time
from functools import wraps
from typing import Callable

logger = logging.getLogger(__name__)


def _describe(name: str, duration_ms: float, items: int | None) -> str:
    message = f"{name} took {duration_ms:.2f}ms"
    if items:
        rate = items / (duration_ms / 1000) if duration_ms > 0 else float("inf")
        message += f" for {items:,} items ({rate:,.0f}/s)"
    return message


def log_slow_operation(threshold_ms: float = 1000, label: str | None = None):
    """Decorator to log slow async store operations.

    When the wrapped coroutine returns an object with a ``loaded`` or
    ``written`` count (LoadStats, FlushStats), that count is reported as
    the item total.

    Args:
        threshold_ms: Log a warning if the call takes longer than this
        label: Name to log instead of the function's qualified name

    Example:
        @log_slow_operation(threshold_ms=5000)
        async def _load(self):
            ...
    """

    def decorator(func: Callable):
        name = label or func.__qualname__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.perf_counter()
            result = None
            try:
                result = await func(*args, **kwargs)
                return result
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                items = getattr(result, "loaded", None) or getattr(result, "written", None)
                if not isinstance(items, int):
                    items = None

                if duration_ms > threshold_ms:
                    logger.warning(
                        f"Slow store operation: {_describe(name, duration_ms, items)} "
                        f"(threshold: {threshold_ms}ms)"
                    )
                else:
                    logger.debug(_describe(name, duration_ms, items))

        return wrapper

    return decorator


class OperationTimer:
    """Context manager timing one phase of a run.

    Args:
        operation_name: Name used in the log line
        threshold_ms: Warn when the phase takes longer than this
        items: Number of records the phase handles, for throughput

    Example:
        with OperationTimer("persist staged records", items=len(staged)) as timer:
            await store.force_persist()
        result.persist_seconds = timer.elapsed
    """

    def __init__(self, operation_name: str, threshold_ms: float = 1000, items: int | None = None):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms
        self.items = items
        self.start_time: float | None = None
        self.elapsed = 0.0

    @property
    def slow(self) -> bool:
        return self.elapsed * 1000 > self.threshold_ms

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        message = _describe(self.operation_name, self.elapsed * 1000, self.items)

        if exc_type is not None:
            logger.debug(f"{message} before failing with {exc_type.__name__}")
        elif self.slow:
            logger.warning(f"Slow operation: {message}")
        else:
            logger.debug(message)
