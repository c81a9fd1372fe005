"""
Module: observability.py
Description: Logging and metrics for the coaching pipeline.

Features:
    - Structured logging with per-task context (user_id, transaction_id)
    - Timing decorators for pipeline entry points
    - In-memory counters for reasoning calls, fallbacks and suppressions

Usage:
    from services.observability import logger, metrics, timed

    @timed("personality.infer")
    async def infer(user_id):
        logger.info("Inferring personality", user_id=user_id)
        ...

Author: Smart Financial Coach Team
"""

import time
import asyncio
import logging
import functools
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Callable
from collections import defaultdict


# Context is per task/coroutine so concurrent jobs for different users don't mix fields
_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Structured logger rendering `message | key=value` lines.

    Context fields set with set_context() are attached to every line logged
    from the same task until clear_context() is called.
    """

    def __init__(self, name: str = "spending-coach"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.INFO)
            formatter = logging.Formatter(
                '%(asctime)s | %(levelname)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_context(self, **kwargs) -> None:
        _log_context.set({**_log_context.get(), **kwargs})

    def clear_context(self) -> None:
        _log_context.set({})

    def _format_message(self, message: str, **kwargs) -> str:
        fields = {**_log_context.get(), **kwargs}
        if fields:
            field_str = " | ".join(f"{k}={v}" for k, v in fields.items())
            return f"{message} | {field_str}"
        return message

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs) -> None:
        """Log at ERROR with the active traceback."""
        self.logger.exception(self._format_message(message, **kwargs))


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    In-memory counters and timings.

    Note: In production, replace with a Prometheus/StatsD client.
    """

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.timings: Dict[str, list] = defaultdict(list)
        self._start_time = _now()

    def increment(self, name: str, value: int = 1, tags: Dict[str, str] = None) -> None:
        key = self._make_key(name, tags)
        self.counters[key] += value

    def timing(self, name: str, duration_ms: float, tags: Dict[str, str] = None) -> None:
        key = self._make_key(name, tags)
        self.timings[key].append(duration_ms)
        # Keep only last 1000 measurements
        if len(self.timings[key]) > 1000:
            self.timings[key] = self.timings[key][-1000:]

    def _make_key(self, name: str, tags: Optional[Dict[str, str]] = None) -> str:
        if tags:
            tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
            return f"{name}:{tag_str}"
        return name

    def get_summary(self) -> Dict[str, Any]:
        summary = {
            "uptime_seconds": (_now() - self._start_time).total_seconds(),
            "counters": dict(self.counters),
            "timings": {},
        }

        for name, values in self.timings.items():
            if values:
                ordered = sorted(values)
                summary["timings"][name] = {
                    "count": len(values),
                    "avg_ms": sum(values) / len(values),
                    "min_ms": ordered[0],
                    "max_ms": ordered[-1],
                    "p50_ms": ordered[len(values) // 2],
                    "p95_ms": ordered[int(len(values) * 0.95)] if len(values) >= 20 else None,
                }

        return summary

    def reset(self) -> None:
        self.counters.clear()
        self.timings.clear()


# =============================================================================
# Timing Decorators
# =============================================================================

def timed(name: str = None):
    """
    Decorator to time function execution and record success/error counts.

    Example:
        @timed("budget.generate")
        async def generate(user_id):
            ...
    """
    def decorator(func: Callable) -> Callable:
        metric_name = name or func.__name__

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                metrics.timing(metric_name, duration_ms)
                logger.debug(f"{metric_name} completed", duration_ms=f"{duration_ms:.2f}")

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                metrics.timing(metric_name, duration_ms)
                logger.debug(f"{metric_name} completed", duration_ms=f"{duration_ms:.2f}")

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@contextmanager
def timed_block(name: str):
    """
    Context manager for timing code blocks.

    Example:
        with timed_block("features.summarize"):
            summarize(transactions)
    """
    start = time.perf_counter()
    try:
        yield
        metrics.increment(f"{name}.success")
    except Exception:
        metrics.increment(f"{name}.error")
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.timing(name, duration_ms)


# =============================================================================
# Global Instances
# =============================================================================

logger = StructuredLogger()

metrics = MetricsCollector()


# =============================================================================
# Convenience Functions
# =============================================================================

def log_reasoning_call(purpose: str, tokens: int, duration_ms: float) -> None:
    logger.debug("Reasoning call", purpose=purpose, tokens=tokens, duration_ms=f"{duration_ms:.2f}")
    metrics.increment("reasoning.calls", tags={"purpose": purpose})
    metrics.increment("reasoning.tokens", tokens)
    metrics.timing("reasoning.latency", duration_ms)


def log_fallback(component: str, reason: str) -> None:
    """A component substituted its deterministic default for model output."""
    logger.warning("Using fallback", component=component, reason=reason)
    metrics.increment(f"{component}.fallback")


def log_suppressed(component: str, reason: str) -> None:
    """A component produced nothing rather than guess."""
    logger.warning("Output suppressed", component=component, reason=reason)
    metrics.increment(f"{component}.suppressed")


def log_skipped(component: str, reason: str) -> None:
    logger.info("Nothing to do", component=component, reason=reason)
    metrics.increment(f"{component}.skipped")
