"""Language model gateway for freeform assistant turns.

Speaks the OpenAI-compatible chat-completions protocol over httpx. The model
only ever sees the redacted context, and its output is decoded into a
``StructuredReply`` or ``PlainTextReply`` and passed through the post-decode
guards before anything reaches the user.
"""
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import httpx

from vtc_booking.core.config import settings
from vtc_booking.core.enums import ChatRole
from vtc_booking.core.errors import ErrorCode, UpstreamError
from vtc_booking.core.metrics import llm_requests, track_upstream
from vtc_booking.schemas.chat import (
    HISTORY_MAX_TURNS,
    ChatTurn,
    DecodedReply,
    FormUpdate,
    PlainTextReply,
    RedactedContext,
    StructuredReply,
)
from vtc_booking.services.guard import scrub_leaks, scrub_lines
from vtc_booking.services.web_search import SearchResult, has_schedule_intent

logger = logging.getLogger(__name__)

REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")
REASONING_MAX_COMPLETION_TOKENS = 1500
STANDARD_MAX_TOKENS = 520
STANDARD_TEMPERATURE = 0.25
LIST_MAX_ITEMS = 7

SYSTEM_PROMPT = "\n".join([
    "Tu es l'assistant de réservation du site sur lequel tu es installé (VTC premium).",
    "Objectif: aider l'utilisateur à compléter sa demande et à réserver.",
    "Règles STRICTES:",
    "- Tu ne recalcules JAMAIS un prix. Tu ne modifies pas le devis.",
    "- Tu utilises uniquement les totaux du contexte (vehicleQuotes) s'ils existent.",
    "- Tu n'expliques jamais comment un prix est construit (prix de départ, prix au kilomètre, formule).",
    "- Si le devis n'existe pas encore, tu demandes les informations manquantes et tu invites à cliquer sur 'Calculer les tarifs'.",
    "- Tu ne promets jamais la disponibilité ni un prix final garanti.",
    "- Tu respectes la confidentialité: ne demande pas de données inutiles.",
    "- Tu NE PROPOSES JAMAIS d'autres chauffeurs, plateformes, comparateurs ou sites web.",
    "- Tu recommandes uniquement des véhicules/options présents dans le contexte (vehiclesCatalog/optionsCatalog).",
    "- Si l'utilisateur parle d'un vol/train, tu peux aider à préparer la réservation (marge, terminal/gare).",
    "  - Le numéro de vol/train est OPTIONNEL. Ne bloque jamais la réservation dessus.",
    "  - Demande-le UNIQUEMENT si l'utilisateur veut vérifier un horaire/retard.",
    "  - Si des infos web sont fournies dans 'webSearch', tu peux t'en servir pour confirmer un horaire/retard.",
    "Tu proposes des mises à jour de formulaire (auto-remplissage) quand c'est possible.",
    "Tu renvoies UNIQUEMENT un JSON valide (pas de markdown, pas de texte autour).",
    "Schéma JSON attendu:",
    "{",
    '  "answer"?: string,',
    '  "questionsMissing": string[],',
    '  "recap": string[],',
    '  "nextStep": string[],',
    '  "formUpdate": {',
    '    "pickup"?: string,',
    '    "dropoff"?: string,',
    '    "pickupDate"?: "YYYY-MM-DD",',
    '    "pickupTime"?: "HH:mm",',
    '    "vehicleId"?: string,',
    '    "optionIds"?: string[]',
    "  }",
    "}",
    "Contraintes formUpdate:",
    "- Ne mets un champ QUE si l'utilisateur l'a fourni clairement.",
    "- vehicleId doit correspondre à un id dans vehiclesCatalog (sinon omet).",
    "- optionIds doit contenir uniquement des ids présents dans optionsCatalog.",
    "  - Si le client ne veut AUCUNE option, mets optionIds: [].",
    "  - Sinon, si tu n'es pas sûr, n'inclus pas optionIds.",
    "- Ne mets jamais de prix dans formUpdate.",
    "Rappels: réponses courtes, en français, orientées action.",
])

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
HHMM_RE = re.compile(r"^\d{2}:\d{2}$")

FLIGHT_NUMBER_QUESTION_RE = re.compile(
    r"(num[ée]ro|num\.?)\s+(de|du)?\s*(vol|train)|num\s+(vol|train)",
    re.IGNORECASE,
)
NO_NUMBER_RE = re.compile(r"(pas|sans)\s+(de\s+)?num", re.IGNORECASE)
TRANSPORT_RE = re.compile(r"\b(vol|flight|train|tgv|sncf)\b", re.IGNORECASE)
OPTIONAL_NUMBER_RECAP = "Vol/train: numéro non communiqué (optionnel)."


@dataclass
class GatewayResult:
    ok: bool
    reply: Optional[DecodedReply] = None
    form_update: Optional[FormUpdate] = None
    error: Optional[ErrorCode] = None
    model: Optional[str] = None


def is_reasoning_model(model: str) -> bool:
    return (model or "").strip().lower().startswith(REASONING_PREFIXES)


def build_payload(model: str, messages: List[dict], max_completion_tokens: Optional[int] = None) -> dict:
    """Request body for one chat-completions call.

    Reasoning models reject ``temperature`` and count hidden reasoning tokens
    against ``max_completion_tokens``, so they get a larger budget.
    """
    payload: Dict[str, Any] = {"model": model, "messages": messages}
    if is_reasoning_model(model):
        payload["max_completion_tokens"] = max_completion_tokens or REASONING_MAX_COMPLETION_TOKENS
    else:
        payload["max_tokens"] = STANDARD_MAX_TOKENS
        payload["temperature"] = STANDARD_TEMPERATURE
    return payload


def build_messages(
    message: str,
    history: Sequence[ChatTurn],
    ctx: RedactedContext,
    web_results: Optional[Sequence[SearchResult]] = None,
    today: Optional[str] = None,
) -> List[dict]:
    turns = list(history or [])[-HISTORY_MAX_TURNS:]
    if turns and turns[-1].role == ChatRole.USER and turns[-1].content.strip() == message.strip():
        turns = turns[:-1]

    context = ctx.model_dump(by_alias=True, mode="json")
    context["webSearch"] = [r.model_dump(mode="json") for r in web_results] if web_results else None
    today = today or datetime.now(ZoneInfo(settings.TIMEZONE)).date().isoformat()

    prompt = (
        f"Aujourd'hui (ISO): {today}\nFuseau: {settings.TIMEZONE}\n\n"
        f"Contexte (ne pas inventer):\n{json.dumps(context, ensure_ascii=False)}\n\n"
        f"Message utilisateur:\n{message}"
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        *({"role": t.role.value, "content": t.content} for t in turns),
        {"role": "user", "content": prompt},
    ]


def normalize_content(content: Any) -> str:
    """Flatten a message content that may be a string or a list of parts."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict):
            text = part.get("text")
            if isinstance(text, str):
                parts.append(text)
            elif isinstance(text, dict) and isinstance(text.get("value"), str):
                parts.append(text["value"])
    return "".join(parts)


def extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    return normalize_content(message.get("content")).strip()


def _try_json_object(text: str) -> Optional[dict]:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_object(text: str) -> Optional[dict]:
    raw = (text or "").strip()
    if not raw:
        return None

    if raw.startswith("{") and raw.endswith("}"):
        direct = _try_json_object(raw)
        if direct is not None:
            return direct

    fenced = FENCED_JSON_RE.search(raw)
    if fenced:
        parsed = _try_json_object(fenced.group(1).strip())
        if parsed is not None:
            return parsed

    start, end = raw.find("{"), raw.rfind("}")
    if 0 <= start < end:
        return _try_json_object(raw[start:end + 1])
    return None


def _string_items(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    items = (v.strip() for v in value if isinstance(v, str))
    return [v for v in items if v][:LIST_MAX_ITEMS]


def decode_reply(text: str) -> DecodedReply:
    obj = extract_json_object(text)
    if obj is None:
        return PlainTextReply(text=(text or "").strip())

    answer = obj.get("answer")
    raw_update = obj.get("formUpdate")
    return StructuredReply(
        answer=answer.strip() if isinstance(answer, str) else "",
        questions_missing=_string_items(obj.get("questionsMissing")),
        recap=_string_items(obj.get("recap")),
        next_step=_string_items(obj.get("nextStep")),
        form_update=FormUpdate.model_validate(_raw_form_update(raw_update)) if isinstance(raw_update, dict) else None,
    )


def _raw_form_update(raw: dict) -> dict:
    # keep only string fields and string lists; validation against catalogs comes later
    out: Dict[str, Any] = {}
    for key in ("pickup", "dropoff", "pickupDate", "pickupTime", "vehicleId"):
        if isinstance(raw.get(key), str) and raw[key].strip():
            out[key] = raw[key].strip()
    if isinstance(raw.get("optionIds"), list):
        out["optionIds"] = [v.strip() for v in raw["optionIds"] if isinstance(v, str) and v.strip()]
    return out


def filter_form_update(update: Optional[FormUpdate], ctx: RedactedContext) -> Optional[FormUpdate]:
    """Drop every id the catalogs do not know and every malformed date or time.

    An explicit empty ``optionIds`` survives: it means the user wants no option.
    """
    if update is None:
        return None

    vehicle_ids = {v.id for v in ctx.vehicles_catalog}
    option_ids = {o.id for o in ctx.options_catalog}

    filtered = FormUpdate(
        pickup=(update.pickup or "")[:220] or None,
        dropoff=(update.dropoff or "")[:220] or None,
        pickup_date=update.pickup_date if update.pickup_date and ISO_DATE_RE.match(update.pickup_date) else None,
        pickup_time=update.pickup_time if update.pickup_time and HHMM_RE.match(update.pickup_time) else None,
        vehicle_id=update.vehicle_id if update.vehicle_id in vehicle_ids else None,
        option_ids=(
            [i for i in update.option_ids if i in option_ids][:12]
            if update.option_ids is not None else None
        ),
    )
    return None if filtered.is_empty() else filtered


def relax_transport_questions(reply: StructuredReply, user_message: str) -> StructuredReply:
    """Stop the model from insisting on a flight or train number.

    The number is only useful when the user asked for a schedule check.
    """
    wants_check = has_schedule_intent(user_message) and not NO_NUMBER_RE.search(user_message)
    if wants_check:
        return reply

    questions = [q for q in reply.questions_missing if not FLIGHT_NUMBER_QUESTION_RE.search(q)]
    recap = list(reply.recap)
    if TRANSPORT_RE.search(user_message) and OPTIONAL_NUMBER_RECAP not in recap:
        recap = [*recap, OPTIONAL_NUMBER_RECAP][:LIST_MAX_ITEMS]
    return reply.model_copy(update={"questions_missing": questions, "recap": recap})


def options_question(ctx: RedactedContext) -> str:
    labels = [o.label[:60] for o in ctx.options_catalog if o.label][:3]
    examples = f" (ex: {' · '.join(labels)})" if labels else ""
    return f"Souhaitez-vous des options{examples}, ou aucune option ?"


def apply_guards(
    reply: DecodedReply,
    user_message: str,
    ctx: RedactedContext,
) -> DecodedReply:
    if isinstance(reply, PlainTextReply):
        return reply.model_copy(update={"text": scrub_leaks(reply.text)})

    guarded = reply.model_copy(update={
        "form_update": filter_form_update(reply.form_update, ctx),
        "answer": scrub_leaks(reply.answer),
        "questions_missing": scrub_lines(reply.questions_missing),
        "recap": scrub_lines(reply.recap),
        "next_step": scrub_lines(reply.next_step),
    })
    return relax_transport_questions(guarded, user_message)


class LLMGateway:
    """OpenAI-compatible chat client with a single fallback retry on empty output."""

    def __init__(
        self,
        api_key: str,
        model: str,
        fallback_model: str = "",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 20.0,
        max_completion_tokens: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.model = (model or "").strip()
        self.fallback_model = (fallback_model or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_completion_tokens = max_completion_tokens
        self._transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "LLMGateway":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            fallback_model=settings.OPENAI_FALLBACK_MODEL,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.OPENAI_TIMEOUT,
            max_completion_tokens=settings.OPENAI_MAX_COMPLETION_TOKENS,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.model)

    @track_upstream("openai")
    async def _complete(self, model: str, messages: List[dict]) -> str:
        payload = build_payload(model, messages, self.max_completion_tokens)
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError("openai", detail=f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError("openai", status=response.status_code, detail=response.text)

        try:
            data = response.json()
        except ValueError:
            data = None
        text = extract_text(data)
        if not text:
            keys = sorted(data)[:25] if isinstance(data, dict) else []
            logger.warning(f"Empty completion from {model} (response keys: {keys})")
        return text

    async def reply(
        self,
        message: str,
        history: Sequence[ChatTurn],
        ctx: RedactedContext,
        web_results: Optional[Sequence[SearchResult]] = None,
    ) -> GatewayResult:
        if not self.is_configured:
            return GatewayResult(ok=False, error=ErrorCode.OPENAI_NOT_CONFIGURED)

        messages = build_messages(message, history, ctx, web_results)
        model = self.model
        try:
            text = await self._complete(model, messages)
        except UpstreamError as e:
            llm_requests.labels(model=model, outcome="error").inc()
            logger.error(f"LLM call failed on {model}: status={e.status} detail={e.detail}")
            return GatewayResult(ok=False, error=ErrorCode.OPENAI_FAILED, model=model)

        if not text and self.fallback_model and self.fallback_model != self.model:
            llm_requests.labels(model=model, outcome="empty").inc()
            model = self.fallback_model
            logger.info(f"Retrying empty completion on fallback model {model}")
            try:
                text = await self._complete(model, messages)
            except UpstreamError as e:
                llm_requests.labels(model=model, outcome="error").inc()
                logger.error(f"Fallback LLM call failed on {model}: status={e.status} detail={e.detail}")
                return GatewayResult(ok=False, error=ErrorCode.OPENAI_EMPTY, model=model)

        if not text:
            llm_requests.labels(model=model, outcome="empty").inc()
            return GatewayResult(ok=False, error=ErrorCode.OPENAI_EMPTY, model=model)

        llm_requests.labels(model=model, outcome="ok").inc()
        decoded = apply_guards(decode_reply(text), message, ctx)
        form_update = decoded.form_update if isinstance(decoded, StructuredReply) else None
        return GatewayResult(ok=True, reply=decoded, form_update=form_update, model=model)
