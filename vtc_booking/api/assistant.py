"""Booking assistant chat endpoint"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from redis.exceptions import RedisError

from vtc_booking.api.deps import get_orchestrator, get_rate_limiter, get_tenant_store
from vtc_booking.core.config import settings
from vtc_booking.core.errors import ErrorCode
from vtc_booking.core.rate_limit import RateLimiter
from vtc_booking.core.response_builders import build_chat_response, build_error_response
from vtc_booking.services.orchestrator import ChatOrchestrator
from vtc_booking.services.sanitizer import validate_chat_body
from vtc_booking.services.tenant_config import TenantConfigStore
from vtc_booking.utils.hashing import client_key

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/assistant", tags=["assistant"])


def client_ip(request: Request) -> str:
    """Resolve the caller address behind Cloudflare or a reverse proxy."""
    for header in ("cf-connecting-ip", "x-real-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value
    forwarded = request.headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.client.host if request.client else "unknown"


@router.post("/chat")
async def chat(
    request: Request,
    shop: Optional[str] = Query(None, max_length=255),
    limiter: RateLimiter = Depends(get_rate_limiter),
    store: TenantConfigStore = Depends(get_tenant_store),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    if not settings.AI_ASSISTANT_ENABLED:
        return build_error_response(ErrorCode.AI_DISABLED)

    decision = await limiter.check(client_key(client_ip(request)))
    if not decision.allowed:
        return build_error_response(ErrorCode.RATE_LIMITED, retry_after_seconds=decision.retry_after_seconds)

    try:
        raw = await request.json()
    except ValueError:
        raw = None

    validated = validate_chat_body(raw)
    if isinstance(validated, ErrorCode):
        return build_error_response(validated)

    tenant_config = None
    if shop:
        try:
            tenant_config = await store.get(shop)
        except RedisError as e:
            logger.warning(f"Tenant config lookup failed for {shop}: {e}")

    outcome = await orchestrator.handle_turn(validated, tenant_config)
    if not outcome.ok:
        return build_error_response(outcome.error)

    logger.info(f"Assistant turn answered in state {outcome.state}")
    return build_chat_response(outcome)
