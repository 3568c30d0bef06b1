import math
from datetime import datetime
from typing import List, Optional, Sequence

from vtc_booking.core.enums import LeadTimeMode, PricingBehavior
from vtc_booking.schemas.tariff import (
    ImmediateSurcharge,
    LeadTimeNotice,
    TariffFailure,
    TariffPriced,
    TariffQuote,
    TariffRequest,
    TariffResult,
    TenantPricingConfig,
    VehicleQuote,
)
from vtc_booking.services.lead_time import classify_lead_time
from vtc_booking.services.options import compute_option_fees

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 5
NIGHT_SURCHARGE = 1.10
VOLUME_DISCOUNT_THRESHOLD = 600.0
VOLUME_DISCOUNT = 0.90
# Catch-all vehicle the widget always prices on request.
OTHER_VEHICLE_ID = "autre"
DEFAULT_QUOTE_MESSAGE = "Sur devis"


def _finite(value, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def billable_km(km: float) -> int:
    """Every started kilometre is billed, and a trip under 1 km bills as 1 km."""
    return max(1, math.ceil(km))


def pickup_hour(pickup_time: str) -> Optional[int]:
    head = (pickup_time or "").strip().split(":")[0]
    try:
        return int(head)
    except ValueError:
        return None


def is_night_hour(hour: Optional[int]) -> bool:
    if hour is None:
        return False
    return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR


def compute_tariff(
    config: TenantPricingConfig,
    req: TariffRequest,
    now: Optional[datetime] = None,
) -> TariffResult:
    km = _finite(req.km, default=math.nan)
    if not math.isfinite(km) or km < 0:
        return TariffFailure(error="INVALID_INPUT")

    vehicle_id = (req.vehicle_id or "").strip()
    vehicle = next((v for v in config.vehicles if v.id == vehicle_id), None)
    if vehicle is None:
        return TariffFailure(error="UNKNOWN_VEHICLE")

    all_quote = config.pricing_behavior == PricingBehavior.ALL_QUOTE
    if all_quote or vehicle.quote_only or vehicle.id == OTHER_VEHICLE_ID:
        return TariffQuote(
            vehicle_id=vehicle.id,
            vehicle_label=vehicle.label,
            quote_message=(config.quote_message or "").strip() or DEFAULT_QUOTE_MESSAGE,
            pricing_mode="all_quote" if all_quote else None,
        )

    stops_count = max(0, int(req.stops_count or 0))
    stop_fee = _finite(config.stop_fee)
    base_fare = _finite(vehicle.base_fare)
    extra_stops_total = stops_count * stop_fee

    total = base_fare + billable_km(km) * _finite(vehicle.price_per_km) + extra_stops_total

    if is_night_hour(pickup_hour(req.pickup_time)):
        total *= NIGHT_SURCHARGE

    if total > VOLUME_DISCOUNT_THRESHOLD:
        total *= VOLUME_DISCOUNT

    options = compute_option_fees(total, req.selected_option_ids, config.options)
    total += options.total_fee

    pricing_mode = None
    threshold = None
    surcharges = None
    if config.pricing_behavior == PricingBehavior.LEAD_TIME_PRICING:
        lead = classify_lead_time(req.pickup_date, req.pickup_time, config.lead_time_threshold_minutes, now=now)
        pricing_mode = lead.mode
        threshold = lead.threshold_minutes

        if lead.mode == LeadTimeMode.IMMEDIATE and config.immediate_surcharge_enabled:
            base_delta_amount = max(0.0, _finite(config.immediate_base_delta_amount))
            base_delta_percent = max(0.0, _finite(config.immediate_base_delta_percent))
            total_delta_percent = max(0.0, _finite(config.immediate_total_delta_percent))

            total += base_delta_amount + base_fare * (base_delta_percent / 100)
            total *= 1 + total_delta_percent / 100

            surcharges = ImmediateSurcharge(
                base_delta_amount=base_delta_amount,
                base_delta_percent=base_delta_percent,
                total_delta_percent=total_delta_percent,
                threshold_minutes=lead.threshold_minutes,
                delta_minutes=lead.delta_minutes,
            )
        else:
            surcharges = LeadTimeNotice(
                kind=lead.mode,
                threshold_minutes=lead.threshold_minutes,
                delta_minutes=lead.delta_minutes,
            )

    return TariffPriced(
        vehicle_id=vehicle.id,
        vehicle_label=vehicle.label,
        total=round(total, 2),
        pricing_mode=pricing_mode,
        lead_time_threshold_minutes=threshold,
        surcharges_applied=surcharges,
        applied_options=options.applied,
        options_fee=options.total_fee,
        extra_stops_total=extra_stops_total,
        stop_fee=stop_fee,
    )


def compute_vehicle_quotes(
    config: TenantPricingConfig,
    km: float,
    stops_count: int = 0,
    pickup_date: str = "",
    pickup_time: str = "",
    selected_option_ids: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> List[VehicleQuote]:
    """Run the engine for every vehicle of the catalog."""
    quotes = []
    for vehicle in config.vehicles:
        result = compute_tariff(config, TariffRequest(
            km=km,
            stops_count=stops_count,
            pickup_date=pickup_date,
            pickup_time=pickup_time,
            vehicle_id=vehicle.id,
            selected_option_ids=list(selected_option_ids),
        ), now=now)
        if not result.ok:
            continue
        quotes.append(VehicleQuote(
            id=vehicle.id,
            label=vehicle.label or vehicle.id,
            is_quote=result.is_quote,
            total=None if result.is_quote else result.total,
        ))
    return quotes
