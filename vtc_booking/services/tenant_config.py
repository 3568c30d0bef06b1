"""Server-side tenant pricing configurations.

A tenant is resolved by key (the shop domain for the storefront widget).
Configs are stored as camelCase JSON, the same shape the widget sends.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis

from vtc_booking.schemas.tariff import TenantPricingConfig

logger = logging.getLogger(__name__)


def tenant_redis_key(tenant_key: str) -> str:
    return f"tenant:{tenant_key}:pricing"


class TenantConfigStore(Protocol):
    async def get(self, tenant_key: str) -> Optional[TenantPricingConfig]:
        ...


class InMemoryTenantConfigStore:
    def __init__(self, configs: Optional[Dict[str, TenantPricingConfig]] = None):
        self._configs = dict(configs or {})

    @classmethod
    def from_file(cls, path: str) -> "InMemoryTenantConfigStore":
        """Load ``{tenant_key: pricingConfig}`` from a JSON file."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        configs = {key.strip(): TenantPricingConfig.model_validate(value) for key, value in raw.items()}
        logger.info(f"Loaded {len(configs)} tenant pricing configs from {path}")
        return cls(configs)

    def put(self, tenant_key: str, config: TenantPricingConfig) -> None:
        self._configs[tenant_key.strip()] = config

    async def get(self, tenant_key: str) -> Optional[TenantPricingConfig]:
        return self._configs.get((tenant_key or "").strip())


class RedisTenantConfigStore:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def put(self, tenant_key: str, config: TenantPricingConfig) -> None:
        await self.redis.set(tenant_redis_key(tenant_key.strip()), config.model_dump_json(by_alias=True))

    async def get(self, tenant_key: str) -> Optional[TenantPricingConfig]:
        key = (tenant_key or "").strip()
        if not key:
            return None
        raw = await self.redis.get(tenant_redis_key(key))
        if raw is None:
            return None
        try:
            return TenantPricingConfig.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Stored pricing config for tenant {key} is invalid: {e.error_count()} errors")
            return None
