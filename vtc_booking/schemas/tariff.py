from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vtc_booking.core.enums import LeadTimeMode, OptionType, PricingBehavior


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TenantVehicle(CamelModel):
    id: str
    label: str = ""
    base_fare: float = 0.0
    price_per_km: float = 0.0
    quote_only: bool = False


class TenantOption(CamelModel):
    id: str
    label: str = ""
    type: OptionType = OptionType.FIXED
    amount: float = 0.0


class TenantPricingConfig(CamelModel):
    vehicles: List[TenantVehicle] = Field(default_factory=list)
    options: List[TenantOption] = Field(default_factory=list)
    stop_fee: float = 0.0
    quote_message: str = "Sur devis"
    pricing_behavior: PricingBehavior = PricingBehavior.NORMAL_PRICES
    lead_time_threshold_minutes: float = 120.0
    immediate_surcharge_enabled: bool = False
    immediate_base_delta_amount: float = 0.0
    immediate_base_delta_percent: float = 0.0
    immediate_total_delta_percent: float = 0.0


class TariffRequest(CamelModel):
    km: float
    stops_count: int = 0
    pickup_date: str = ""
    pickup_time: str = ""
    vehicle_id: str
    selected_option_ids: List[str] = Field(default_factory=list)


class AppliedOption(CamelModel):
    id: str
    label: str
    type: OptionType
    amount: float
    fee: float


class LeadTimeInfo(CamelModel):
    mode: LeadTimeMode
    threshold_minutes: float
    delta_minutes: Optional[float] = None


class ImmediateSurcharge(CamelModel):
    kind: Literal["immediate"] = "immediate"
    base_delta_amount: float
    base_delta_percent: float
    total_delta_percent: float
    threshold_minutes: float
    delta_minutes: Optional[float] = None


class LeadTimeNotice(CamelModel):
    kind: LeadTimeMode
    threshold_minutes: float
    delta_minutes: Optional[float] = None


class TariffPriced(CamelModel):
    ok: Literal[True] = True
    is_quote: Literal[False] = False
    vehicle_id: str
    vehicle_label: str
    total: float
    pricing_mode: Optional[LeadTimeMode] = None
    lead_time_threshold_minutes: Optional[float] = None
    surcharges_applied: Optional[Union[ImmediateSurcharge, LeadTimeNotice]] = None
    applied_options: List[AppliedOption] = Field(default_factory=list)
    options_fee: float = 0.0
    extra_stops_total: float = 0.0
    stop_fee: float = 0.0


class TariffQuote(CamelModel):
    ok: Literal[True] = True
    is_quote: Literal[True] = True
    vehicle_id: str
    vehicle_label: str
    total: Literal[0] = 0
    quote_message: str
    pricing_mode: Optional[Literal["all_quote"]] = None
    applied_options: List[AppliedOption] = Field(default_factory=list, max_length=0)
    options_fee: Literal[0] = 0


class TariffFailure(CamelModel):
    ok: Literal[False] = False
    error: Literal["UNKNOWN_VEHICLE", "INVALID_INPUT"]


TariffResult = Union[TariffPriced, TariffQuote, TariffFailure]


class VehicleQuote(CamelModel):
    id: str
    label: str = ""
    is_quote: bool = False
    total: Optional[float] = None
