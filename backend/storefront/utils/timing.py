"""Lightweight timing helpers for request and signal latency logging."""
import time
from contextlib import contextmanager
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """Current value of the high-resolution timer in milliseconds."""
    return time.perf_counter() * 1000


@contextmanager
def time_operation(label: str, log_fn: Optional[Callable[[str], None]] = None, min_ms: float = 0.0):
    """
    Time the enclosed block and log "<label>: <elapsed>ms".

    Works around awaits too, so it can wrap a whole request handler:

        with time_operation(f"recommendations product={product_id}", min_ms=100):
            items = await service.generate_recommendations(product_id, user_id, limit)
    """
    start = now_ms()
    try:
        yield
    finally:
        elapsed = now_ms() - start
        if elapsed >= min_ms:
            (log_fn or logger.debug)(f"{label}: {elapsed:.2f}ms")


def log_elapsed(start_ms: float, label: str, log_fn: Optional[Callable[[str], None]] = None) -> float:
    """Log the time since start_ms and return a fresh timestamp for chaining."""
    elapsed = now_ms() - start_ms
    (log_fn or logger.debug)(f"{label}: {elapsed:.2f}ms")
    return now_ms()
