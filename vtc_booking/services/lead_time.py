from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from vtc_booking.core.config import settings
from vtc_booking.core.enums import LeadTimeMode
from vtc_booking.schemas.tariff import LeadTimeInfo


def parse_pickup_datetime(pickup_date: str, pickup_time: str, tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    date_part = (pickup_date or "").strip()
    if not date_part:
        return None
    time_part = (pickup_time or "").strip() or "00:00"
    try:
        naive = datetime.fromisoformat(f"{date_part}T{time_part}")
    except ValueError:
        return None
    if naive.tzinfo is not None:
        return naive
    return naive.replace(tzinfo=tz or ZoneInfo(settings.TIMEZONE))


def classify_lead_time(
    pickup_date: str,
    pickup_time: str,
    threshold_minutes: float,
    now: Optional[datetime] = None,
) -> LeadTimeInfo:
    """Classify a pickup as immediate or reservation.

    An unparsable pickup is treated as a reservation so no surcharge applies.
    """
    threshold = max(0.0, float(threshold_minutes or 0))
    tz = ZoneInfo(settings.TIMEZONE)
    pickup = parse_pickup_datetime(pickup_date, pickup_time, tz)
    if pickup is None:
        return LeadTimeInfo(mode=LeadTimeMode.RESERVATION, threshold_minutes=threshold, delta_minutes=None)

    current = now or datetime.now(tz)
    if current.tzinfo is None:
        current = current.replace(tzinfo=tz)
    delta = (pickup - current).total_seconds() / 60

    mode = LeadTimeMode.IMMEDIATE if delta < threshold else LeadTimeMode.RESERVATION
    return LeadTimeInfo(mode=mode, threshold_minutes=threshold, delta_minutes=delta)
