"""Prometheus metrics for monitoring"""
import time
from functools import wraps
from typing import Callable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

registry = CollectorRegistry()

request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=registry
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

rate_limit_exceeded = Counter(
    'rate_limit_exceeded_total',
    'Total rate limit exceeded events',
    ['scope'],
    registry=registry
)

tariff_computations = Counter(
    'tariff_computations_total',
    'Total tariff engine runs',
    ['outcome'],
    registry=registry
)

assistant_turns = Counter(
    'assistant_turns_total',
    'Total assistant turns by conversation state',
    ['state'],
    registry=registry
)

llm_requests = Counter(
    'llm_requests_total',
    'Total language model calls',
    ['model', 'outcome'],
    registry=registry
)

upstream_duration = Histogram(
    'upstream_request_duration_seconds',
    'Provider call duration in seconds',
    ['provider'],
    registry=registry
)

redis_connected = Gauge(
    'redis_connected',
    'Redis connection status (1=connected, 0=disconnected)',
    registry=registry
)


def track_upstream(provider: str):
    """Decorator to time provider calls, failures included"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                upstream_duration.labels(provider=provider).observe(time.time() - start_time)
        return wrapper
    return decorator


def get_metrics_text() -> str:
    """Generate Prometheus metrics in text format"""
    return generate_latest(registry).decode('utf-8')
