"""FastAPI dependencies wiring the services to settings and Redis.

Tests swap any of these through ``app.dependency_overrides``.
"""
from functools import lru_cache

from vtc_booking.core.config import settings
from vtc_booking.core.rate_limit import RateLimiter, memory_limiter_from_settings, redis_limiter_from_settings
from vtc_booking.core.redis import get_redis
from vtc_booking.services.llm_gateway import LLMGateway
from vtc_booking.services.orchestrator import ChatOrchestrator
from vtc_booking.services.routing import RoutingClient
from vtc_booking.services.tenant_config import InMemoryTenantConfigStore, RedisTenantConfigStore, TenantConfigStore
from vtc_booking.services.web_search import WebSearchClient


@lru_cache
def _memory_rate_limiter():
    return memory_limiter_from_settings()


@lru_cache
def _memory_tenant_store() -> InMemoryTenantConfigStore:
    if settings.TENANT_CONFIG_FILE:
        return InMemoryTenantConfigStore.from_file(settings.TENANT_CONFIG_FILE)
    return InMemoryTenantConfigStore()


def get_rate_limiter() -> RateLimiter:
    redis = get_redis()
    if redis is not None:
        return redis_limiter_from_settings(redis)
    return _memory_rate_limiter()


def get_tenant_store() -> TenantConfigStore:
    redis = get_redis()
    if redis is not None:
        return RedisTenantConfigStore(redis)
    return _memory_tenant_store()


def get_orchestrator() -> ChatOrchestrator:
    return ChatOrchestrator(
        gateway=LLMGateway.from_settings(),
        routing=RoutingClient.from_settings(),
        search=WebSearchClient.from_settings(),
    )
