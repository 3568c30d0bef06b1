import json
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from vtc_booking.api.deps import get_orchestrator, get_rate_limiter, get_tenant_store
from vtc_booking.core.config import settings
from vtc_booking.core.rate_limit import InMemoryRateLimiter
from vtc_booking.main import app
from vtc_booking.schemas.tariff import TenantOption, TenantPricingConfig, TenantVehicle
from vtc_booking.services.llm_gateway import LLMGateway
from vtc_booking.services.orchestrator import ChatOrchestrator
from vtc_booking.services.tenant_config import InMemoryTenantConfigStore

PARIS = ZoneInfo("Europe/Paris")


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 10, 9, 0, tzinfo=PARIS)


@pytest.fixture
def pricing_config():
    return TenantPricingConfig(
        vehicles=[
            TenantVehicle(id="berline", label="Berline 4 places", base_fare=10.0, price_per_km=2.0),
            TenantVehicle(id="van", label="Van 7 places", base_fare=15.0, price_per_km=2.5),
            TenantVehicle(id="prestige", label="Classe S", base_fare=30.0, price_per_km=4.0, quote_only=True),
            TenantVehicle(id="autre", label="Autre véhicule", base_fare=0.0, price_per_km=0.0),
        ],
        options=[
            TenantOption(id="siege", label="Siège enfant", type="fixed", amount=10.0),
            TenantOption(id="confort", label="Pack confort", type="percent", amount=10.0),
        ],
        stop_fee=5.0,
    )


@pytest.fixture
def chat_context():
    """Widget context with the route filled in and nothing else decided"""
    return {
        "pickup": "Gare de Lyon, Paris",
        "dropoff": "Aéroport d'Orly",
        "date": "2026-03-12",
        "time": "14:30",
        "currency": "EUR",
        "vehiclesCatalog": [
            {"id": "berline", "label": "Berline 4 places"},
            {"id": "van", "label": "Van 7 places"},
        ],
        "optionsCatalog": [],
        "vehicleQuotes": [],
    }


def openai_transport(*contents, status_code=200, calls=None):
    """MockTransport answering successive chat-completions calls with the given contents"""
    replies = list(contents)

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(json.loads(request.content))
        if status_code >= 400:
            return httpx.Response(status_code, text='{"error": {"message": "upstream exploded"}}')
        content = replies.pop(0) if replies else ""
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})

    return httpx.MockTransport(handler)


@pytest.fixture
def make_gateway():
    def _make(*contents, status_code=200, calls=None, model="gpt-4o-mini", fallback_model="gpt-4o"):
        return LLMGateway(
            api_key="sk-test",
            model=model,
            fallback_model=fallback_model,
            transport=openai_transport(*contents, status_code=status_code, calls=calls),
        )
    return _make


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter(
        limit=settings.RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW,
        retry_after_seconds=settings.RATE_LIMIT_RETRY_AFTER,
    )


@pytest.fixture
def tenant_store(pricing_config):
    return InMemoryTenantConfigStore({"demo-shop.myshopify.com": pricing_config})


@pytest.fixture
async def test_client(rate_limiter, tenant_store, make_gateway):
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_tenant_store] = lambda: tenant_store
    app.dependency_overrides[get_orchestrator] = lambda: ChatOrchestrator(gateway=make_gateway())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "pricing: marks tests related to the tariff engine"
    )
    config.addinivalue_line(
        "markers", "assistant: marks tests related to the booking assistant"
    )
    config.addinivalue_line(
        "markers", "rate_limit: marks tests related to rate limiting"
    )
    config.addinivalue_line(
        "markers", "llm: marks tests related to the language model gateway"
    )
