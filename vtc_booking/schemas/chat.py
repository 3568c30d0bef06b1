from typing import List, Literal, Optional, Union

from pydantic import Field

from vtc_booking.core.enums import ChatRole, OptionsDecision
from vtc_booking.schemas.tariff import CamelModel, TenantPricingConfig, VehicleQuote

HISTORY_MAX_TURNS = 12


class ChatTurn(CamelModel):
    role: ChatRole
    content: str


class CatalogVehicle(CamelModel):
    id: str
    label: str = ""
    quote_only: bool = False


class CatalogOption(CamelModel):
    id: str
    label: str = ""
    type: str = ""
    amount: Optional[float] = None


class ConversationContext(CamelModel):
    pickup: str = ""
    dropoff: str = ""
    date: str = ""
    time: str = ""
    vehicle: str = ""
    vehicle_id: str = ""
    currency: str = "EUR"
    options: List[str] = Field(default_factory=list)
    selected_option_ids: List[str] = Field(default_factory=list)
    vehicles_catalog: List[CatalogVehicle] = Field(default_factory=list)
    options_catalog: List[CatalogOption] = Field(default_factory=list)
    vehicle_quotes: List[VehicleQuote] = Field(default_factory=list)
    options_asked_once: bool = False
    options_decision: OptionsDecision = OptionsDecision.UNKNOWN
    counts_asked_once: bool = False
    passengers_count: Optional[int] = None
    bags_count: Optional[int] = None
    stops_count: int = 0
    custom_option: str = ""
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    previous_option_ids: Optional[List[str]] = None
    pricing_config: Optional[TenantPricingConfig] = None


class RedactedContext(CamelModel):
    """Subset of the conversation that may be sent to the language model."""

    pickup: str = ""
    dropoff: str = ""
    date: str = ""
    time: str = ""
    vehicle: str = ""
    currency: str = "EUR"
    options: List[str] = Field(default_factory=list)
    stops_count: int = 0
    custom_option: str = ""
    passengers_count: Optional[int] = None
    bags_count: Optional[int] = None
    options_decision: OptionsDecision = OptionsDecision.UNKNOWN
    vehicles_catalog: List[CatalogVehicle] = Field(default_factory=list)
    options_catalog: List[CatalogOption] = Field(default_factory=list)
    vehicle_quotes: List[VehicleQuote] = Field(default_factory=list)


class FormUpdate(CamelModel):
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    pickup_date: Optional[str] = None
    pickup_time: Optional[str] = None
    vehicle_id: Optional[str] = None
    option_ids: Optional[List[str]] = None
    suggested_vehicle_ids: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class ConversationFlags(CamelModel):
    options_asked_once: bool = False
    options_decision: OptionsDecision = OptionsDecision.UNKNOWN
    counts_asked_once: bool = False
    passengers_count: Optional[int] = None
    bags_count: Optional[int] = None


class ValidatedChat(CamelModel):
    user_message: str
    context: ConversationContext
    history: List[ChatTurn] = Field(default_factory=list)


class StructuredReply(CamelModel):
    kind: Literal["structured"] = "structured"
    answer: str = ""
    questions_missing: List[str] = Field(default_factory=list)
    recap: List[str] = Field(default_factory=list)
    next_step: List[str] = Field(default_factory=list)
    form_update: Optional[FormUpdate] = None


class PlainTextReply(CamelModel):
    kind: Literal["plain"] = "plain"
    text: str


DecodedReply = Union[StructuredReply, PlainTextReply]


class ChatResponse(CamelModel):
    ok: Literal[True] = True
    reply: str
    form_update: Optional[FormUpdate] = None
    vehicle_quotes: List[VehicleQuote] = Field(default_factory=list)
    state: ConversationFlags
    history: List[ChatTurn] = Field(default_factory=list)


class ErrorResponse(CamelModel):
    ok: Literal[False] = False
    error: str
    retry_after_seconds: Optional[int] = None
