import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from vtc_booking.core.config import settings
from vtc_booking.core.errors import UpstreamError
from vtc_booking.core.metrics import track_upstream

logger = logging.getLogger(__name__)


@dataclass
class RouteResult:
    ok: bool
    km: Optional[float] = None
    minutes: Optional[float] = None
    error: Optional[str] = None


class RoutingClient:
    """Driving distance between two free-text addresses (Google Distance Matrix)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://maps.googleapis.com/maps/api/distancematrix/json",
        timeout: float = 15.0,
        wait_seconds: float = 9.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url
        self.timeout = timeout
        self.wait_seconds = wait_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "RoutingClient":
        return cls(
            api_key=settings.ROUTING_API_KEY,
            base_url=settings.ROUTING_BASE_URL,
            timeout=settings.ROUTING_TIMEOUT,
            wait_seconds=settings.ROUTE_WAIT_SECONDS,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @track_upstream("routing")
    async def _fetch(self, origin: str, destination: str) -> dict:
        params = {
            "origins": origin,
            "destinations": destination,
            "mode": "driving",
            "language": "fr",
            "key": self.api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.base_url, params=params)
        except httpx.HTTPError as e:
            raise UpstreamError("routing", detail=type(e).__name__) from e
        if response.status_code >= 400:
            raise UpstreamError("routing", status=response.status_code, detail=response.text)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("routing", status=response.status_code, detail="invalid JSON") from e

    async def lookup(self, origin: str, destination: str) -> RouteResult:
        if not self.is_configured:
            return RouteResult(ok=False, error="NOT_CONFIGURED")
        if not origin.strip() or not destination.strip():
            return RouteResult(ok=False, error="MISSING_ADDRESS")

        try:
            data = await asyncio.wait_for(self._fetch(origin, destination), timeout=self.wait_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Routing lookup exceeded {self.wait_seconds}s")
            return RouteResult(ok=False, error="TIMEOUT")
        except UpstreamError as e:
            logger.warning(f"Routing lookup failed: status={e.status} detail={e.detail}")
            return RouteResult(ok=False, error="UPSTREAM")

        return parse_distance_matrix(data)


def parse_distance_matrix(data: dict) -> RouteResult:
    if not isinstance(data, dict) or data.get("status") != "OK":
        return RouteResult(ok=False, error="NO_ROUTE")
    try:
        element = data["rows"][0]["elements"][0]
    except (KeyError, IndexError, TypeError):
        return RouteResult(ok=False, error="NO_ROUTE")
    if not isinstance(element, dict) or element.get("status") != "OK":
        return RouteResult(ok=False, error="NO_ROUTE")

    meters = (element.get("distance") or {}).get("value")
    seconds = (element.get("duration") or {}).get("value")
    if not isinstance(meters, (int, float)) or meters < 0:
        return RouteResult(ok=False, error="NO_ROUTE")
    minutes = seconds / 60 if isinstance(seconds, (int, float)) else None
    return RouteResult(ok=True, km=meters / 1000, minutes=minutes)
