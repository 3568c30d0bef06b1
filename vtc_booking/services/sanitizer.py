"""Rebuild untrusted chat payloads field by field.

Nothing in the inbound JSON is passed through as-is: strings are trimmed and
capped, arrays are truncated, numbers must be finite and nested objects are
reconstructed from the fields we know about.
"""
import math
from typing import Any, List, Optional, Union

from vtc_booking.core.config import settings
from vtc_booking.core.enums import ChatRole, OptionsDecision, OptionType, PricingBehavior
from vtc_booking.core.errors import ErrorCode
from vtc_booking.schemas.chat import (
    HISTORY_MAX_TURNS,
    CatalogOption,
    CatalogVehicle,
    ChatTurn,
    ConversationContext,
    ValidatedChat,
)
from vtc_booking.schemas.tariff import TenantOption, TenantPricingConfig, TenantVehicle, VehicleQuote

USER_MESSAGE_MAX_LEN = 800
HISTORY_CONTENT_MAX_LEN = 2000
ADDRESS_MAX_LEN = 220
VEHICLES_MAX = 12
OPTIONS_MAX = 20
QUOTES_MAX = 12
SELECTED_MAX = 12


def clamp_string(value: Any, max_len: int) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()[:max_len]


def finite_number(value: Any) -> Optional[float]:
    # bool is an int subclass; a JSON true is not a number
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def count_value(value: Any) -> Optional[int]:
    number = finite_number(value)
    if number is None or number < 0 or number != int(number):
        return None
    return int(number)


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _string_list(value: Any, item_len: int, limit: int) -> List[str]:
    items = (clamp_string(v, item_len) for v in _as_list(value))
    return [v for v in items if v][:limit]


def _vehicles_catalog(raw: Any) -> List[CatalogVehicle]:
    out = []
    for item in _as_list(raw):
        obj = _as_dict(item)
        vid = clamp_string(obj.get("id"), 48)
        label = clamp_string(obj.get("label"), 80)
        if not vid:
            continue
        out.append(CatalogVehicle(id=vid, label=label, quote_only=obj.get("quoteOnly") is True))
    return out[:VEHICLES_MAX]


def _options_catalog(raw: Any) -> List[CatalogOption]:
    out = []
    for item in _as_list(raw):
        obj = _as_dict(item)
        oid = clamp_string(obj.get("id"), 64)
        if not oid:
            continue
        out.append(CatalogOption(
            id=oid,
            label=clamp_string(obj.get("label"), 100),
            type=clamp_string(obj.get("type"), 24),
            amount=finite_number(obj.get("amount")),
        ))
    return out[:OPTIONS_MAX]


def _vehicle_quotes(raw: Any) -> List[VehicleQuote]:
    out = []
    for item in _as_list(raw):
        obj = _as_dict(item)
        qid = clamp_string(obj.get("id"), 64)
        label = clamp_string(obj.get("label"), 80)
        if not qid and not label:
            continue
        out.append(VehicleQuote(
            id=qid,
            label=label,
            is_quote=obj.get("isQuote") is True,
            total=finite_number(obj.get("total")),
        ))
    return out[:QUOTES_MAX]


def sanitize_pricing_config(raw: Any) -> Optional[TenantPricingConfig]:
    obj = raw if isinstance(raw, dict) else None
    if obj is None:
        return None

    vehicles = []
    for item in _as_list(obj.get("vehicles")):
        v = _as_dict(item)
        vid = clamp_string(v.get("id"), 48)
        if not vid:
            continue
        vehicles.append(TenantVehicle(
            id=vid,
            label=clamp_string(v.get("label"), 80),
            base_fare=finite_number(v.get("baseFare")) or 0.0,
            price_per_km=finite_number(v.get("pricePerKm")) or 0.0,
            quote_only=v.get("quoteOnly") is True,
        ))

    options = []
    for item in _as_list(obj.get("options")):
        o = _as_dict(item)
        oid = clamp_string(o.get("id"), 64)
        if not oid:
            continue
        kind = OptionType.PERCENT if clamp_string(o.get("type"), 24) == "percent" else OptionType.FIXED
        options.append(TenantOption(
            id=oid,
            label=clamp_string(o.get("label"), 100),
            type=kind,
            amount=finite_number(o.get("amount")) or 0.0,
        ))

    behavior_raw = clamp_string(obj.get("pricingBehavior"), 32)
    try:
        behavior = PricingBehavior(behavior_raw)
    except ValueError:
        behavior = PricingBehavior.NORMAL_PRICES

    threshold = finite_number(obj.get("leadTimeThresholdMinutes"))
    return TenantPricingConfig(
        vehicles=vehicles[:VEHICLES_MAX],
        options=options[:OPTIONS_MAX],
        stop_fee=finite_number(obj.get("stopFee")) or 0.0,
        quote_message=clamp_string(obj.get("quoteMessage"), 300) or "Sur devis",
        pricing_behavior=behavior,
        lead_time_threshold_minutes=threshold if threshold is not None else 120.0,
        immediate_surcharge_enabled=obj.get("immediateSurchargeEnabled") is True,
        immediate_base_delta_amount=finite_number(obj.get("immediateBaseDeltaAmount")) or 0.0,
        immediate_base_delta_percent=finite_number(obj.get("immediateBaseDeltaPercent")) or 0.0,
        immediate_total_delta_percent=finite_number(obj.get("immediateTotalDeltaPercent")) or 0.0,
    )


def _options_decision(value: Any) -> OptionsDecision:
    try:
        return OptionsDecision(clamp_string(value, 24))
    except ValueError:
        return OptionsDecision.UNKNOWN


def _flag(obj: dict, key: str, legacy_key: str) -> bool:
    if isinstance(obj.get(key), bool):
        return obj[key]
    return obj.get(legacy_key) is True


def sanitize_context(raw: Any) -> ConversationContext:
    obj = _as_dict(raw)
    quote = _as_dict(obj.get("quote"))

    distance = finite_number(obj.get("distanceKm"))
    if distance is None:
        distance = finite_number(quote.get("distance"))
    duration = finite_number(obj.get("durationMinutes"))
    if duration is None:
        duration = finite_number(quote.get("duration"))

    previous = _as_dict(obj.get("lastFormUpdate"))
    previous_option_ids = None
    if isinstance(previous.get("optionIds"), list):
        previous_option_ids = _string_list(previous["optionIds"], 64, SELECTED_MAX)

    passengers = count_value(obj.get("passengersCount"))
    if passengers == 0:
        passengers = None

    return ConversationContext(
        pickup=clamp_string(obj.get("pickup"), ADDRESS_MAX_LEN),
        dropoff=clamp_string(obj.get("dropoff"), ADDRESS_MAX_LEN),
        date=clamp_string(obj.get("date"), 32),
        time=clamp_string(obj.get("time"), 16),
        vehicle=clamp_string(obj.get("vehicle"), 80),
        vehicle_id=clamp_string(obj.get("vehicleId"), 48),
        currency=clamp_string(obj.get("currency"), 8) or settings.DEFAULT_CURRENCY,
        options=_string_list(obj.get("options"), 80, SELECTED_MAX),
        selected_option_ids=_string_list(obj.get("selectedOptionIds"), 64, SELECTED_MAX),
        vehicles_catalog=_vehicles_catalog(obj.get("vehiclesCatalog")),
        options_catalog=_options_catalog(obj.get("optionsCatalog")),
        vehicle_quotes=_vehicle_quotes(obj.get("vehicleQuotes")),
        options_asked_once=_flag(obj, "optionsAskedOnce", "aiOptionsAskedOnce"),
        options_decision=_options_decision(obj.get("optionsDecision", obj.get("aiOptionsDecision"))),
        counts_asked_once=_flag(obj, "countsAskedOnce", "aiCountsAskedOnce"),
        passengers_count=passengers,
        bags_count=count_value(obj.get("bagsCount")),
        stops_count=count_value(obj.get("stopsCount")) or 0,
        custom_option=clamp_string(obj.get("customOption"), 200),
        distance_km=distance if distance is not None and distance >= 0 else None,
        duration_minutes=duration,
        previous_option_ids=previous_option_ids,
        pricing_config=sanitize_pricing_config(obj.get("pricingConfig")),
    )


def sanitize_history(raw: Any) -> List[ChatTurn]:
    turns = []
    for item in _as_list(raw):
        obj = _as_dict(item)
        role = obj.get("role")
        content = clamp_string(obj.get("content"), HISTORY_CONTENT_MAX_LEN)
        if role not in (ChatRole.USER.value, ChatRole.ASSISTANT.value) or not content:
            continue
        turns.append(ChatTurn(role=ChatRole(role), content=content))
    return turns[-HISTORY_MAX_TURNS:]


def append_turn(history: List[ChatTurn], role: ChatRole, content: str) -> List[ChatTurn]:
    """Return a new history with the turn appended, trimmed from the oldest end."""
    text = (content or "").strip()
    if not text:
        return list(history)[-HISTORY_MAX_TURNS:]
    return [*history, ChatTurn(role=role, content=text)][-HISTORY_MAX_TURNS:]


def validate_chat_body(raw: Any) -> Union[ValidatedChat, ErrorCode]:
    if not isinstance(raw, dict):
        return ErrorCode.INVALID_JSON

    user_message = clamp_string(raw.get("userMessage"), USER_MESSAGE_MAX_LEN)
    if not user_message:
        return ErrorCode.EMPTY_MESSAGE

    return ValidatedChat(
        user_message=user_message,
        context=sanitize_context(raw.get("context")),
        history=sanitize_history(raw.get("history")),
    )
