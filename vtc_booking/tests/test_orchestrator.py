import json

import httpx
import pytest

from vtc_booking.core.enums import ConversationState, OptionsDecision
from vtc_booking.core.errors import ErrorCode
from vtc_booking.schemas.tariff import VehicleQuote
from vtc_booking.services.guard import PRICING_DEFLECTION_REPLY
from vtc_booking.services.llm_gateway import LLMGateway
from vtc_booking.services.orchestrator import (
    CLARIFY_ADDRESSES_REPLY,
    COUNTS_CORRECTION_PROMPT,
    ChatOrchestrator,
    merge_quotes,
)
from vtc_booking.services.routing import RoutingClient
from vtc_booking.services.sanitizer import validate_chat_body
from vtc_booking.services.web_search import WebSearchClient

OPTIONS_CATALOG = [
    {"id": "siege", "label": "Siège enfant", "type": "fixed", "amount": 10},
    {"id": "confort", "label": "Pack confort", "type": "percent", "amount": 10},
]
OPTIONS_QUESTION = "Souhaitez-vous des options (ex: Siège enfant · Pack confort), ou aucune option ?"
CLIENT_QUOTES = [
    {"id": "berline", "label": "Berline 4 places", "isQuote": False, "total": 36},
    {"id": "van", "label": "Van 7 places", "isQuote": False, "total": 47.5},
]


def _chat(context, message="Bonjour", history=None):
    return validate_chat_body({"userMessage": message, "context": context, "history": history or []})


def _distance_matrix(meters):
    def handler(request: httpx.Request) -> httpx.Response:
        if meters is None:
            return httpx.Response(200, json={"status": "OK", "rows": [{"elements": [{"status": "NOT_FOUND"}]}]})
        return httpx.Response(200, json={
            "status": "OK",
            "rows": [{"elements": [{"status": "OK", "distance": {"value": meters}, "duration": {"value": 1500}}]}],
        })
    return httpx.MockTransport(handler)


@pytest.fixture
def counted_context(chat_context):
    return dict(chat_context, passengersCount=2, bagsCount=1)


@pytest.mark.assistant
class TestMissingRoute:

    @pytest.mark.asyncio
    async def test_names_missing_fields(self, chat_context, make_gateway):
        calls = []
        orchestrator = ChatOrchestrator(gateway=make_gateway(calls=calls))

        outcome = await orchestrator.handle_turn(_chat(dict(chat_context, date="", time="")))

        assert outcome.ok is True
        assert outcome.state == ConversationState.MISSING_ROUTE
        assert "la date" in outcome.reply
        assert "l'heure de prise en charge" in outcome.reply
        assert "l'adresse de départ" not in outcome.reply
        assert calls == []


@pytest.mark.assistant
class TestOptionsDecision:

    @pytest.mark.asyncio
    async def test_empty_catalog_skips_to_counts(self, chat_context, make_gateway):
        calls = []
        orchestrator = ChatOrchestrator(gateway=make_gateway(calls=calls))

        outcome = await orchestrator.handle_turn(_chat(chat_context))

        assert outcome.state == ConversationState.COUNTS_PENDING
        assert outcome.reply.startswith("Combien de passagers")
        assert outcome.flags.counts_asked_once is True
        assert outcome.flags.options_decision == OptionsDecision.NONE
        assert outcome.form_update is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_asks_once(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())

        outcome = await orchestrator.handle_turn(_chat(dict(chat_context, optionsCatalog=OPTIONS_CATALOG)))

        assert outcome.state == ConversationState.OPTIONS_DECISION
        assert outcome.reply == OPTIONS_QUESTION
        assert outcome.flags.options_asked_once is True

    @pytest.mark.asyncio
    async def test_not_asked_twice(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, optionsCatalog=OPTIONS_CATALOG, optionsAskedOnce=True)

        outcome = await orchestrator.handle_turn(_chat(context, "Je ne sais pas encore"))

        assert outcome.state == ConversationState.COUNTS_PENDING
        assert outcome.flags.options_decision == OptionsDecision.UNKNOWN

    @pytest.mark.asyncio
    async def test_no_options_inferred_from_message(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, optionsCatalog=OPTIONS_CATALOG)

        outcome = await orchestrator.handle_turn(_chat(context, "Pas d'option, merci"))

        assert outcome.state == ConversationState.COUNTS_PENDING
        assert outcome.flags.options_decision == OptionsDecision.NONE
        assert outcome.form_update.option_ids == []

    @pytest.mark.asyncio
    async def test_option_label_inferred_from_message(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, optionsCatalog=OPTIONS_CATALOG)

        outcome = await orchestrator.handle_turn(_chat(context, "Il me faut un siège enfant"))

        assert outcome.flags.options_decision == OptionsDecision.SOME
        assert outcome.form_update.option_ids == ["siege"]

    @pytest.mark.asyncio
    async def test_short_no_after_options_question(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, optionsCatalog=OPTIONS_CATALOG, optionsAskedOnce=True)
        history = [{"role": "assistant", "content": OPTIONS_QUESTION}]

        outcome = await orchestrator.handle_turn(_chat(context, "non", history))

        assert outcome.flags.options_decision == OptionsDecision.NONE

    @pytest.mark.asyncio
    async def test_calculator_selection_beats_older_turns(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, optionsCatalog=OPTIONS_CATALOG, selectedOptionIds=["siege"])
        history = [{"role": "user", "content": "pas d'option pour l'instant"}]

        outcome = await orchestrator.handle_turn(_chat(context, "2 pax 1 valise", history))

        assert outcome.flags.options_decision == OptionsDecision.SOME
        assert outcome.form_update is None or outcome.form_update.option_ids is None

    @pytest.mark.asyncio
    async def test_current_message_beats_calculator_selection(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, optionsCatalog=OPTIONS_CATALOG, selectedOptionIds=["siege"])

        outcome = await orchestrator.handle_turn(_chat(context, "Finalement sans option"))

        assert outcome.flags.options_decision == OptionsDecision.NONE
        assert outcome.form_update.option_ids == []


@pytest.mark.assistant
class TestCounts:

    @pytest.mark.asyncio
    async def test_partial_counts_ask_for_the_rest(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())

        outcome = await orchestrator.handle_turn(_chat(chat_context, "Nous serons 3 passagers"))

        assert outcome.reply == "Combien de bagages (valises) prévoyez-vous ?"
        assert outcome.flags.passengers_count == 3
        assert outcome.flags.bags_count is None

    @pytest.mark.asyncio
    async def test_correction_prompt_after_first_question(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, countsAskedOnce=True)

        outcome = await orchestrator.handle_turn(_chat(context, "je ne sais pas"))

        assert outcome.state == ConversationState.COUNTS_PENDING
        assert outcome.reply == COUNTS_CORRECTION_PROMPT

    @pytest.mark.asyncio
    async def test_counts_from_earlier_user_turns(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        context = dict(chat_context, vehicleQuotes=CLIENT_QUOTES)
        history = [
            {"role": "user", "content": "Nous serons 2 passagers"},
            {"role": "assistant", "content": "Combien de bagages (valises) prévoyez-vous ?"},
        ]

        outcome = await orchestrator.handle_turn(_chat(context, "3 valises", history))

        assert outcome.state == ConversationState.RECOMMEND
        assert outcome.flags.passengers_count == 2
        assert outcome.flags.bags_count == 3


@pytest.mark.assistant
class TestRecommendation:

    @pytest.mark.asyncio
    async def test_client_quotes_ranked(self, counted_context, make_gateway):
        calls = []
        orchestrator = ChatOrchestrator(gateway=make_gateway(calls=calls))

        outcome = await orchestrator.handle_turn(_chat(dict(counted_context, vehicleQuotes=CLIENT_QUOTES)))

        assert outcome.state == ConversationState.RECOMMEND
        assert outcome.reply.startswith("Pour 2 passagers et 1 bagage, voici")
        assert "- Berline 4 places: 36.00 EUR" in outcome.reply
        assert outcome.form_update.suggested_vehicle_ids == ["berline", "van"]
        assert calls == []

    @pytest.mark.asyncio
    async def test_server_quotes_win(self, counted_context, pricing_config, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        stale = [{"id": "berline", "label": "Berline 4 places", "isQuote": False, "total": 99}]
        context = dict(counted_context, vehicleQuotes=stale, distanceKm=12.4)

        outcome = await orchestrator.handle_turn(_chat(context), pricing_config)

        by_id = {q.id: q for q in outcome.vehicle_quotes}
        assert by_id["berline"].total == pytest.approx(36.0)
        assert by_id["van"].total == pytest.approx(47.5)
        assert by_id["prestige"].is_quote is True
        assert outcome.form_update.suggested_vehicle_ids == ["berline", "van"]

    @pytest.mark.asyncio
    async def test_distance_from_routing(self, counted_context, pricing_config, make_gateway):
        routing = RoutingClient(api_key="maps-key", transport=_distance_matrix(12400))
        orchestrator = ChatOrchestrator(gateway=make_gateway(), routing=routing)

        outcome = await orchestrator.handle_turn(_chat(counted_context), pricing_config)

        assert outcome.state == ConversationState.RECOMMEND
        assert {q.id: q.total for q in outcome.vehicle_quotes}["berline"] == pytest.approx(36.0)

    @pytest.mark.asyncio
    async def test_routing_failure_asks_to_clarify(self, counted_context, pricing_config, make_gateway):
        routing = RoutingClient(api_key="maps-key", transport=_distance_matrix(None))
        orchestrator = ChatOrchestrator(gateway=make_gateway(), routing=routing)

        outcome = await orchestrator.handle_turn(_chat(counted_context), pricing_config)

        assert outcome.reply == CLARIFY_ADDRESSES_REPLY

    @pytest.mark.asyncio
    async def test_only_quote_vehicles(self, counted_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        quotes = [{"id": "prestige", "label": "Classe S", "isQuote": True}]
        catalog = [{"id": "prestige", "label": "Classe S"}]
        context = dict(counted_context, vehiclesCatalog=catalog, vehicleQuotes=quotes)

        outcome = await orchestrator.handle_turn(_chat(context))

        assert outcome.reply.startswith("Pour ce trajet, nos tarifs sont établis sur devis.")
        assert "- Classe S: sur devis" in outcome.reply
        assert outcome.form_update is None

    def test_merge_quotes(self):
        server = [VehicleQuote(id="berline", label="Berline", total=36.0)]
        client = [VehicleQuote(id="berline", total=99.0), VehicleQuote(id="van", total=47.5)]

        merged = merge_quotes(server, client)

        assert [(q.id, q.total) for q in merged] == [("berline", 36.0), ("van", 47.5)]

    def test_merge_quotes_drops_unknown_client_ids(self):
        client = [VehicleQuote(id="injected", total=1.0), VehicleQuote(id="berline", total=40.0)]

        merged = merge_quotes([], client, {"berline", "van"})

        assert [q.id for q in merged] == ["berline"]

    @pytest.mark.asyncio
    async def test_client_quotes_outside_catalog_never_suggested(self, counted_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        quotes = [
            {"id": "injected", "label": "Injected 8 places", "total": 1},
            {"id": "berline", "label": "Berline 4 places", "total": 40},
        ]

        outcome = await orchestrator.handle_turn(_chat(dict(counted_context, vehicleQuotes=quotes)))

        assert outcome.form_update.suggested_vehicle_ids == ["berline"]
        assert [q.id for q in outcome.vehicle_quotes] == ["berline"]
        assert "Injected" not in outcome.reply


@pytest.mark.assistant
class TestFreeform:

    @pytest.mark.asyncio
    async def test_formula_question_deflected_without_model(self, counted_context, make_gateway):
        calls = []
        orchestrator = ChatOrchestrator(gateway=make_gateway(calls=calls))

        outcome = await orchestrator.handle_turn(_chat(counted_context, "Comment calculez-vous le prix ?"))

        assert outcome.state == ConversationState.FREEFORM
        assert outcome.reply == PRICING_DEFLECTION_REPLY
        assert calls == []

    @pytest.mark.asyncio
    async def test_model_answers_with_redacted_context(self, counted_context, make_gateway):
        calls = []
        content = json.dumps({"answer": "Oui, un vélo pliable passe dans le coffre."})
        orchestrator = ChatOrchestrator(gateway=make_gateway(content, calls=calls))
        context = dict(counted_context, pricingConfig={"vehicles": [{"id": "berline", "baseFare": 10}]})

        outcome = await orchestrator.handle_turn(_chat(context, "Puis-je emporter un vélo ?"))

        assert outcome.state == ConversationState.FREEFORM
        assert outcome.reply == "Oui, un vélo pliable passe dans le coffre."
        prompt = calls[0]["messages"][-1]["content"]
        assert '"passengersCount": 2' in prompt
        assert "baseFare" not in prompt

    @pytest.mark.asyncio
    async def test_model_option_ids_update_decision(self, counted_context, make_gateway):
        content = json.dumps({"answer": "C'est noté.", "formUpdate": {"optionIds": ["siege"]}})
        orchestrator = ChatOrchestrator(gateway=make_gateway(content))
        context = dict(counted_context, optionsCatalog=OPTIONS_CATALOG, optionsAskedOnce=True)

        outcome = await orchestrator.handle_turn(_chat(context, "Ajoutez ce qu'il faut pour mon bébé"))

        assert outcome.flags.options_decision == OptionsDecision.SOME
        assert outcome.form_update.option_ids == ["siege"]

    @pytest.mark.asyncio
    async def test_model_reply_not_amended_with_options_question(self, counted_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway(json.dumps({"answer": "Oui, sans souci."})))
        context = dict(counted_context, optionsCatalog=OPTIONS_CATALOG, optionsAskedOnce=True)

        outcome = await orchestrator.handle_turn(_chat(context, "Puis-je emporter un vélo ?"))

        assert outcome.state == ConversationState.FREEFORM
        assert outcome.flags.options_decision == OptionsDecision.UNKNOWN
        assert outcome.reply == "Oui, sans souci."

    @pytest.mark.asyncio
    async def test_schedule_question_uses_web_search(self, counted_context, make_gateway):
        calls = []
        serper = httpx.MockTransport(lambda request: httpx.Response(200, json={"organic": [
            {"title": "AF1234 Paris-Orly", "link": "https://flights.example/af1234", "snippet": "À l'heure"},
            {"title": "Taxi Orly pas cher", "link": "https://taxi.example", "snippet": "Réservez"},
        ]}))
        orchestrator = ChatOrchestrator(
            gateway=make_gateway("Votre vol est annoncé à l'heure.", calls=calls),
            search=WebSearchClient(api_key="serper-key", transport=serper),
        )

        outcome = await orchestrator.handle_turn(_chat(counted_context, "Mon vol AF1234 est-il en retard ?"))

        prompt = calls[0]["messages"][-1]["content"]
        assert "AF1234 Paris-Orly" in prompt
        assert "Taxi Orly" not in prompt
        assert outcome.reply == "Votre vol est annoncé à l'heure."

    @pytest.mark.asyncio
    async def test_not_configured(self, counted_context):
        orchestrator = ChatOrchestrator(gateway=LLMGateway(api_key="", model="gpt-4o-mini"))

        outcome = await orchestrator.handle_turn(_chat(counted_context, "Puis-je emporter un vélo ?"))

        assert outcome.ok is False
        assert outcome.error == ErrorCode.OPENAI_NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_model_failure(self, counted_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway(status_code=500))

        outcome = await orchestrator.handle_turn(_chat(counted_context, "Puis-je emporter un vélo ?"))

        assert outcome.error == ErrorCode.OPENAI_FAILED
        assert outcome.history[-1].content == "Puis-je emporter un vélo ?"


@pytest.mark.assistant
class TestHistory:

    @pytest.mark.asyncio
    async def test_history_capped_at_twelve(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        history = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"tour {i}"}
            for i in range(12)
        ]

        outcome = await orchestrator.handle_turn(_chat(dict(chat_context, date=""), "Bonjour", history))

        assert len(outcome.history) == 12
        assert outcome.history[-2].content == "Bonjour"
        assert outcome.history[-1].content == outcome.reply

    @pytest.mark.asyncio
    async def test_user_turn_not_duplicated(self, chat_context, make_gateway):
        orchestrator = ChatOrchestrator(gateway=make_gateway())
        history = [{"role": "user", "content": "Bonjour"}]

        outcome = await orchestrator.handle_turn(_chat(dict(chat_context, date=""), "Bonjour", history))

        assert [t.content for t in outcome.history] == ["Bonjour", outcome.reply]
