import re
from typing import List, Optional, Sequence

from vtc_booking.schemas.tariff import VehicleQuote

CAPACITY_RE = re.compile(r"(\d{1,2})\s*(?:pax|places?|passagers?)\b", re.IGNORECASE)
VAN_RE = re.compile(r"\b(?:van|minibus|minivan)\b", re.IGNORECASE)

MAX_PICKS = 3


def label_capacity(label: str) -> Optional[int]:
    match = CAPACITY_RE.search(label or "")
    return int(match.group(1)) if match else None


def is_van(quote: VehicleQuote) -> bool:
    return bool(VAN_RE.search(f"{quote.label} {quote.id}"))


def needs_van(passengers: Optional[int], bags: Optional[int]) -> bool:
    if bags is None:
        return False
    return bags >= 4 or (bags >= 3 and bags >= (passengers or 0))


def rank_vehicles(
    quotes: Sequence[VehicleQuote],
    passengers: Optional[int],
    bags: Optional[int],
    limit: int = MAX_PICKS,
) -> List[VehicleQuote]:
    """Pick up to ``limit`` priced vehicles, cheapest first.

    Vehicles whose label states a capacity below the passenger count are
    dropped unless that would leave nothing. When the luggage calls for a van
    and none made the cut, the cheapest van takes the second slot.
    """
    priced = sorted(
        (q for q in quotes if not q.is_quote and q.total is not None),
        key=lambda q: q.total,
    )
    if not priced:
        return []

    fitting = priced
    if passengers:
        fitting = [q for q in priced if (label_capacity(q.label) or passengers) >= passengers]
        if not fitting:
            fitting = priced

    picks = fitting[:limit]
    if needs_van(passengers, bags) and not any(is_van(q) for q in picks):
        van = next((q for q in fitting if is_van(q)), None) or next((q for q in priced if is_van(q)), None)
        if van is not None:
            picks = [*picks[:1], van, *picks[1:]][:limit]
    return picks
