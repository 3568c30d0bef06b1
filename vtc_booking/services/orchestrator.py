"""Slot-filling conversation driver for the booking assistant.

The conversation state is never stored here. Every turn re-derives it from
the slots the caller already knows, in a fixed priority order:

    S0 missing route -> S1 options decision -> S2 counts -> S3 recommend -> S4 freeform

S0 to S3 answer deterministically. Only S4 may call the language model, and
only under the redacted context.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Set, Tuple

from vtc_booking.core.enums import ChatRole, ConversationState, OptionsDecision
from vtc_booking.core.errors import ErrorCode
from vtc_booking.core.metrics import assistant_turns
from vtc_booking.schemas.chat import (
    ChatTurn,
    ConversationContext,
    ConversationFlags,
    DecodedReply,
    FormUpdate,
    PlainTextReply,
    ValidatedChat,
)
from vtc_booking.schemas.tariff import TenantPricingConfig, VehicleQuote
from vtc_booking.services.counts import Counts, extract_counts, valid_bags, valid_passengers
from vtc_booking.services.formatter import format_amount, format_reply
from vtc_booking.services.guard import PRICING_DEFLECTION_REPLY, is_pricing_formula_question, redact_context
from vtc_booking.services.llm_gateway import LLMGateway, options_question
from vtc_booking.services.pricing import compute_vehicle_quotes
from vtc_booking.services.recommendation import rank_vehicles
from vtc_booking.services.routing import RoutingClient
from vtc_booking.services.sanitizer import append_turn
from vtc_booking.services.web_search import WebSearchClient, looks_like_schedule_question
from vtc_booking.utils.hashing import message_fingerprint

logger = logging.getLogger(__name__)

ROUTE_FIELDS = (
    ("pickup", "l'adresse de départ"),
    ("dropoff", "l'adresse d'arrivée"),
    ("date", "la date"),
    ("time", "l'heure de prise en charge"),
)

NO_OPTIONS_RE = re.compile(
    r"\b(?:pas|sans|aucune?)\s+(?:d['’]\s*|de\s+)?(?:options?|suppl[ée]ments?)\b",
    re.IGNORECASE,
)
SHORT_NO_RE = re.compile(r"^\s*(?:non|aucune?|rien)\b", re.IGNORECASE)

COUNTS_CORRECTION_PROMPT = (
    "Pour finaliser, répondez exactement au format suivant : Passagers : X / Bagages : Y "
    "(par exemple : Passagers : 2 / Bagages : 3)."
)
CLARIFY_ADDRESSES_REPLY = (
    "Je n'arrive pas à calculer l'itinéraire entre ces deux adresses. "
    "Pouvez-vous préciser l'adresse de départ et l'adresse d'arrivée (numéro, rue, ville) ?"
)
BOOKING_NEXT_STEP = "Choisissez un véhicule puis cliquez sur 'Réserver'."


@dataclass
class ChatOutcome:
    state: ConversationState
    flags: ConversationFlags
    history: List[ChatTurn]
    reply: str = ""
    form_update: Optional[FormUpdate] = None
    vehicle_quotes: List[VehicleQuote] = field(default_factory=list)
    error: Optional[ErrorCode] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class OptionsResolution:
    decision: OptionsDecision
    option_ids: Optional[List[str]] = None
    inferred: bool = False


def missing_route_fields(ctx: ConversationContext) -> List[str]:
    return [label for attr, label in ROUTE_FIELDS if not getattr(ctx, attr).strip()]


def _asked_options_last(history: Sequence[ChatTurn]) -> bool:
    for turn in reversed(history or []):
        if turn.role == ChatRole.ASSISTANT:
            text = turn.content.lower()
            return "option" in text and ("souhaitez-vous" in text or "aucune option" in text)
    return False


def _options_in_text(text: str, ctx: ConversationContext) -> Optional[OptionsResolution]:
    if NO_OPTIONS_RE.search(text):
        return OptionsResolution(OptionsDecision.NONE, option_ids=[], inferred=True)

    lowered = text.lower()
    matched = [o.id for o in ctx.options_catalog if len(o.label) >= 3 and o.label.lower() in lowered]
    if matched:
        return OptionsResolution(OptionsDecision.SOME, option_ids=matched, inferred=True)
    return None


def infer_options_from_text(
    message: str,
    history: Sequence[ChatTurn],
    ctx: ConversationContext,
) -> Optional[OptionsResolution]:
    """Read an options decision out of what the user wrote, if there is one."""
    user_texts = [message] + [t.content for t in reversed(history or []) if t.role == ChatRole.USER]
    for text in user_texts:
        found = _options_in_text(text, ctx)
        if found is not None:
            return found

    if _asked_options_last(history) and SHORT_NO_RE.match(message):
        return OptionsResolution(OptionsDecision.NONE, option_ids=[], inferred=True)
    return None


def resolve_options(message: str, history: Sequence[ChatTurn], ctx: ConversationContext) -> OptionsResolution:
    if not ctx.options_catalog:
        return OptionsResolution(OptionsDecision.NONE, option_ids=[])

    # what the user writes now beats the calculator, which beats older turns
    current = _options_in_text(message, ctx)
    if current is not None:
        return current

    if ctx.selected_option_ids or ctx.options:
        return OptionsResolution(OptionsDecision.SOME, option_ids=list(ctx.selected_option_ids))

    inferred = infer_options_from_text(message, history, ctx)
    if inferred is not None:
        return inferred
    if ctx.options_decision != OptionsDecision.UNKNOWN:
        ids = list(ctx.selected_option_ids) if ctx.options_decision == OptionsDecision.SOME else []
        return OptionsResolution(ctx.options_decision, option_ids=ids)
    if ctx.previous_option_ids is not None:
        decision = OptionsDecision.SOME if ctx.previous_option_ids else OptionsDecision.NONE
        return OptionsResolution(decision, option_ids=list(ctx.previous_option_ids))
    return OptionsResolution(OptionsDecision.UNKNOWN)


def resolve_counts(message: str, history: Sequence[ChatTurn], ctx: ConversationContext) -> Counts:
    counts = Counts(passengers=valid_passengers(ctx.passengers_count), bags=valid_bags(ctx.bags_count))
    if counts.complete:
        return counts

    found = extract_counts(message, history)
    earlier = [t.content for t in reversed(history or []) if t.role == ChatRole.USER and t.content != message]
    for text in earlier:
        if found.complete:
            break
        older = extract_counts(text)
        found.passengers = found.passengers if found.passengers is not None else older.passengers
        found.bags = found.bags if found.bags is not None else older.bags

    if counts.passengers is None:
        counts.passengers = found.passengers
    if counts.bags is None:
        counts.bags = found.bags
    return counts


def counts_question(counts: Counts) -> str:
    if counts.passengers is None and counts.bags is None:
        return "Combien de passagers serez-vous, et combien de bagages (valises) prévoyez-vous ?"
    if counts.passengers is None:
        return "Combien de passagers serez-vous ?"
    return "Combien de bagages (valises) prévoyez-vous ?"


def known_vehicle_ids(ctx: ConversationContext, tenant_config: Optional[TenantPricingConfig]) -> Set[str]:
    config = tenant_config or ctx.pricing_config
    if config is not None and config.vehicles:
        return {v.id for v in config.vehicles}
    return {v.id for v in ctx.vehicles_catalog}


def merge_quotes(
    server: Sequence[VehicleQuote],
    client: Sequence[VehicleQuote],
    allowed_ids: Optional[Set[str]] = None,
) -> List[VehicleQuote]:
    """Server-computed quotes win per vehicle id; client quotes only fill the gaps.

    Client quotes for vehicles outside `allowed_ids` are dropped.
    """
    known = {q.id for q in server}
    extra = [q for q in client if q.id not in known and (allowed_ids is None or q.id in allowed_ids)]
    return [*server, *extra]


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n > 1 else ''}"


def render_recommendation(picks: Sequence[VehicleQuote], counts: Counts, currency: str) -> str:
    lines = [
        f"Pour {_plural(counts.passengers, 'passager')} et {_plural(counts.bags, 'bagage')}, "
        "voici les véhicules que je vous recommande :",
    ]
    lines += [f"- {q.label or q.id}: {format_amount(q.total, currency)}" for q in picks]
    lines += ["", BOOKING_NEXT_STEP]
    return "\n".join(lines)


class ChatOrchestrator:
    def __init__(
        self,
        gateway: LLMGateway,
        routing: Optional[RoutingClient] = None,
        search: Optional[WebSearchClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.routing = routing
        self.search = search
        self.clock = clock

    async def handle_turn(
        self,
        chat: ValidatedChat,
        tenant_config: Optional[TenantPricingConfig] = None,
    ) -> ChatOutcome:
        ctx = chat.context
        message = chat.user_message
        history = list(chat.history)
        flags = ConversationFlags(
            options_asked_once=ctx.options_asked_once,
            options_decision=ctx.options_decision,
            counts_asked_once=ctx.counts_asked_once,
            passengers_count=ctx.passengers_count,
            bags_count=ctx.bags_count,
        )
        logger.info(f"Assistant turn for message {message_fingerprint(message)} ({len(history)} prior turns)")

        # S0
        missing = missing_route_fields(ctx)
        if missing:
            text = (
                f"Pour préparer votre devis, il me manque : {', '.join(missing)}. "
                "Renseignez-les dans le calculateur, puis écrivez-moi à nouveau."
            )
            return self._finish(ConversationState.MISSING_ROUTE, PlainTextReply(text=text), chat, flags)

        # S1
        options = resolve_options(message, history, ctx)
        flags.options_decision = options.decision
        options_update = FormUpdate(option_ids=options.option_ids) if options.inferred else None
        if options.decision == OptionsDecision.UNKNOWN and not flags.options_asked_once:
            flags.options_asked_once = True
            reply = PlainTextReply(text=options_question(redact_context(ctx)))
            return self._finish(ConversationState.OPTIONS_DECISION, reply, chat, flags)

        # S2
        counts = resolve_counts(message, history, ctx)
        flags.passengers_count = counts.passengers
        flags.bags_count = counts.bags
        if not counts.complete:
            if flags.counts_asked_once:
                text = COUNTS_CORRECTION_PROMPT
            else:
                flags.counts_asked_once = True
                text = counts_question(counts)
            return self._finish(
                ConversationState.COUNTS_PENDING, PlainTextReply(text=text), chat, flags, form_update=options_update,
            )

        # S3
        server_quotes, route_failed = await self._server_quotes(ctx, tenant_config, options.option_ids or [])
        quotes = merge_quotes(server_quotes, ctx.vehicle_quotes, known_vehicle_ids(ctx, tenant_config))
        if route_failed and not quotes:
            reply = PlainTextReply(text=CLARIFY_ADDRESSES_REPLY)
            return self._finish(ConversationState.RECOMMEND, reply, chat, flags, form_update=options_update)

        if quotes:
            picks = rank_vehicles(quotes, counts.passengers, counts.bags)
            if picks:
                text = render_recommendation(picks, counts, ctx.currency)
                update = _merge_updates(options_update, FormUpdate(suggested_vehicle_ids=[q.id for q in picks]))
            else:
                text = "Pour ce trajet, nos tarifs sont établis sur devis."
                update = options_update
            return self._finish(
                ConversationState.RECOMMEND, PlainTextReply(text=text), chat, flags,
                form_update=update, quotes=quotes,
            )

        # S4
        if is_pricing_formula_question(message):
            reply = PlainTextReply(text=PRICING_DEFLECTION_REPLY)
            return self._finish(ConversationState.FREEFORM, reply, chat, flags, form_update=options_update)

        return await self._freeform(chat, flags, options_update, quotes)

    async def _server_quotes(
        self,
        ctx: ConversationContext,
        tenant_config: Optional[TenantPricingConfig],
        option_ids: List[str],
    ) -> Tuple[List[VehicleQuote], bool]:
        config = tenant_config or ctx.pricing_config
        if config is None or not config.vehicles:
            return [], False

        km = ctx.distance_km
        if km is None:
            if self.routing is None or not self.routing.is_configured:
                return [], False
            route = await self.routing.lookup(ctx.pickup, ctx.dropoff)
            if not route.ok:
                logger.warning(f"Route lookup failed: {route.error}")
                return [], True
            km = route.km

        now = self.clock() if self.clock else None
        quotes = compute_vehicle_quotes(
            config,
            km=km,
            stops_count=ctx.stops_count,
            pickup_date=ctx.date,
            pickup_time=ctx.time,
            selected_option_ids=option_ids,
            now=now,
        )
        return quotes, False

    async def _freeform(
        self,
        chat: ValidatedChat,
        flags: ConversationFlags,
        options_update: Optional[FormUpdate],
        quotes: List[VehicleQuote],
    ) -> ChatOutcome:
        message = chat.user_message
        if not self.gateway.is_configured:
            return self._fail(ErrorCode.OPENAI_NOT_CONFIGURED, chat, flags)

        web_results = None
        if self.search is not None and self.search.is_configured and looks_like_schedule_question(message):
            web_results = await self.search.search(message)

        redacted = redact_context(chat.context).model_copy(update={
            "vehicle_quotes": quotes,
            "options_decision": flags.options_decision,
            "passengers_count": flags.passengers_count,
            "bags_count": flags.bags_count,
        })
        # the options question is asked by S1 only
        result = await self.gateway.reply(message, chat.history, redacted, web_results)
        if not result.ok:
            return self._fail(result.error, chat, flags)

        update = _merge_updates(options_update, result.form_update)
        if update is not None and update.option_ids is not None:
            flags.options_decision = OptionsDecision.SOME if update.option_ids else OptionsDecision.NONE
        return self._finish(ConversationState.FREEFORM, result.reply, chat, flags, form_update=update, quotes=quotes)

    def _finish(
        self,
        state: ConversationState,
        reply: DecodedReply,
        chat: ValidatedChat,
        flags: ConversationFlags,
        form_update: Optional[FormUpdate] = None,
        quotes: Optional[List[VehicleQuote]] = None,
    ) -> ChatOutcome:
        text = format_reply(reply, quotes or [], chat.context.currency)
        assistant_turns.labels(state=state.value).inc()
        history = _with_user_turn(chat.history, chat.user_message)
        return ChatOutcome(
            state=state,
            reply=text,
            form_update=form_update if form_update is not None and not form_update.is_empty() else None,
            vehicle_quotes=list(quotes if quotes is not None else chat.context.vehicle_quotes),
            flags=flags,
            history=append_turn(history, ChatRole.ASSISTANT, text),
        )

    def _fail(self, error: ErrorCode, chat: ValidatedChat, flags: ConversationFlags) -> ChatOutcome:
        assistant_turns.labels(state=ConversationState.FREEFORM.value).inc()
        return ChatOutcome(
            state=ConversationState.FREEFORM,
            flags=flags,
            history=_with_user_turn(chat.history, chat.user_message),
            vehicle_quotes=list(chat.context.vehicle_quotes),
            error=error,
        )


def _with_user_turn(history: Sequence[ChatTurn], message: str) -> List[ChatTurn]:
    # the widget may already have pushed the message it is sending
    if history and history[-1].role == ChatRole.USER and history[-1].content == message:
        return list(history)
    return append_turn(list(history), ChatRole.USER, message)


def _merge_updates(first: Optional[FormUpdate], second: Optional[FormUpdate]) -> Optional[FormUpdate]:
    if first is None:
        return second
    if second is None:
        return first
    merged = first.model_dump(exclude_none=True)
    merged.update(second.model_dump(exclude_none=True))
    return FormUpdate(**merged)
