"""Tariff computation endpoint"""
import logging

from fastapi import APIRouter, Depends, Path
from redis.exceptions import RedisError

from vtc_booking.api.deps import get_tenant_store
from vtc_booking.core.errors import ErrorCode
from vtc_booking.core.metrics import tariff_computations
from vtc_booking.core.response_builders import build_error_response, build_json_response
from vtc_booking.schemas.tariff import TariffRequest
from vtc_booking.services.pricing import compute_tariff
from vtc_booking.services.tenant_config import TenantConfigStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tariffs", tags=["tariffs"])


@router.post("/{tenant_key}")
async def calc_tariff(
    req: TariffRequest,
    tenant_key: str = Path(..., min_length=1, max_length=255),
    store: TenantConfigStore = Depends(get_tenant_store),
):
    try:
        config = await store.get(tenant_key)
    except RedisError as e:
        tariff_computations.labels(outcome="tenant_config_unavailable").inc()
        logger.error(f"Tenant config lookup failed for {tenant_key}: {e}")
        return build_error_response(ErrorCode.TENANT_CONFIG_UNAVAILABLE)

    if config is None:
        tariff_computations.labels(outcome="tenant_not_found").inc()
        logger.info(f"Tariff requested for unknown tenant {tenant_key}")
        return build_error_response(ErrorCode.TENANT_NOT_FOUND)

    result = compute_tariff(config, req)
    if not result.ok:
        tariff_computations.labels(outcome=result.error.lower()).inc()
        return build_json_response(result, status_code=ErrorCode(result.error).http_status)

    tariff_computations.labels(outcome="quote" if result.is_quote else "priced").inc()
    # pricingMode stays in the body as null for normal pricing
    return build_json_response(result, exclude_none=False)
