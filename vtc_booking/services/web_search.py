import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel

from vtc_booking.core.config import settings
from vtc_booking.core.errors import UpstreamError
from vtc_booking.core.metrics import track_upstream

logger = logging.getLogger(__name__)

MAX_RESULTS = 4
# Never surface a competitor to the user through search snippets.
BLOCKED_WORDS = ("vtc", "chauffeur", "taxi", "uber", "bolt", "heetch", "cab", "driver")

TRANSPORT_WORDS = ("vol", "flight", "train", "tgv", "sncf")
SCHEDULE_WORDS = (
    "retard",
    "horaire",
    "statut",
    "status",
    "suivi",
    "tracker",
    "sur internet",
    "vérifi",
    "verifi",
    "chercher",
    "recherche",
)


class SearchResult(BaseModel):
    title: str = ""
    link: str = ""
    snippet: str = ""


def has_schedule_intent(message: str) -> bool:
    text = (message or "").lower()
    return any(w in text for w in SCHEDULE_WORDS)


def looks_like_schedule_question(message: str) -> bool:
    """A flight or train is mentioned and the user wants its timetable checked."""
    text = (message or "").lower()
    return any(w in text for w in TRANSPORT_WORDS) and has_schedule_intent(text)


def _is_blocked(result: SearchResult) -> bool:
    haystack = f"{result.title} {result.snippet} {result.link}".lower()
    return any(w in haystack for w in BLOCKED_WORDS)


class WebSearchClient:
    def __init__(
        self,
        api_key: str,
        url: str = "https://google.serper.dev/search",
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "WebSearchClient":
        return cls(settings.SERPER_API_KEY, settings.SERPER_URL, settings.SEARCH_TIMEOUT, transport=transport)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @track_upstream("serper")
    async def _fetch(self, query: str) -> dict:
        headers = {"X-API-KEY": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"q": query, "num": 5}, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError("serper", detail=f"{type(e).__name__}: {e}") from e
        if response.status_code >= 400:
            raise UpstreamError("serper", status=response.status_code, detail=response.text)
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def search(self, query: str) -> List[SearchResult]:
        """Organic results with competitors filtered out.

        Search only enriches the model prompt, so any failure yields no results.
        """
        query = (query or "").strip()
        if not self.is_configured or not query:
            return []
        try:
            data = await self._fetch(query)
        except UpstreamError as e:
            logger.warning(f"Web search failed: status={e.status} detail={e.detail}")
            return []

        results = []
        for item in data.get("organic") or []:
            if not isinstance(item, dict):
                continue
            result = SearchResult(
                title=str(item.get("title") or "").strip(),
                link=str(item.get("link") or "").strip(),
                snippet=str(item.get("snippet") or "").strip(),
            )
            if not result.title and not result.snippet:
                continue
            if _is_blocked(result):
                continue
            results.append(result)
        return results[:MAX_RESULTS]
