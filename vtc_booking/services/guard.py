"""Redaction and pricing-leak guard.

Everything that leaves the service towards the language model goes through
``redact_context``; every reply that leaves towards the end user goes through
``scrub_leaks``. The tenant's fare structure (base fare, per-km rate) must not
cross either boundary.
"""
import logging
import re
from typing import Iterable, List

from vtc_booking.schemas.chat import CatalogOption, CatalogVehicle, ConversationContext, RedactedContext

logger = logging.getLogger(__name__)

SAFE_TOTAL_SENTENCE = "Voici le total estimé, sans le détail du calcul."

PRICING_DEFLECTION_REPLY = (
    "Je ne peux pas détailler la méthode de calcul de nos tarifs. "
    "En revanche, je vous donne volontiers le total estimé de votre trajet : "
    "indiquez le départ, l'arrivée, la date et l'heure, puis cliquez sur "
    "'Calculer les tarifs' pour obtenir le prix de chaque véhicule."
)

LEAK_PATTERNS = [
    re.compile(r"€\s*/\s*km", re.IGNORECASE),
    re.compile(r"\beur\s*/\s*km", re.IGNORECASE),
    re.compile(r"\(\s*base", re.IGNORECASE),
    re.compile(r"base\s*\)", re.IGNORECASE),
    re.compile(r"\bbase\b", re.IGNORECASE),
]

_PRICE_INTENT = re.compile(
    r"\b(prix|tarifs?|co[uû]ts?|montant|total|devis|factur\w*|combien|payer)\b|€",
    re.IGNORECASE,
)
_FORMULA_INTENT = [
    re.compile(r"\bcomment\b.*\bcalcul", re.IGNORECASE),
    re.compile(r"\bformule", re.IGNORECASE),
    re.compile(r"d[ée]tail", re.IGNORECASE),
    re.compile(r"\bbase\b", re.IGNORECASE),
    re.compile(r"(€|eur)\s*/\s*km", re.IGNORECASE),
    re.compile(r"\b(par|au)\s+(km|kilom[eè]tre)", re.IGNORECASE),
]


def redact_context(ctx: ConversationContext) -> RedactedContext:
    """Build the only view of the conversation the language model may see."""
    return RedactedContext(
        pickup=ctx.pickup,
        dropoff=ctx.dropoff,
        date=ctx.date,
        time=ctx.time,
        vehicle=ctx.vehicle,
        currency=ctx.currency,
        options=list(ctx.options),
        stops_count=ctx.stops_count,
        custom_option=ctx.custom_option,
        passengers_count=ctx.passengers_count,
        bags_count=ctx.bags_count,
        options_decision=ctx.options_decision,
        vehicles_catalog=[
            CatalogVehicle(id=v.id, label=v.label, quote_only=v.quote_only)
            for v in ctx.vehicles_catalog
        ],
        options_catalog=[
            CatalogOption(id=o.id, label=o.label, type=o.type, amount=o.amount)
            for o in ctx.options_catalog
        ],
        vehicle_quotes=list(ctx.vehicle_quotes),
    )


def contains_pricing_leak(text: str) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in LEAK_PATTERNS)


def scrub_leaks(text: str) -> str:
    """Replace every line that exposes a pricing component with a neutral sentence."""
    if not contains_pricing_leak(text):
        return text

    out: List[str] = []
    for line in text.split("\n"):
        if not contains_pricing_leak(line):
            out.append(line)
            continue
        prefix = "- " if line.lstrip().startswith("-") else ""
        safe = prefix + SAFE_TOTAL_SENTENCE
        if not out or out[-1] != safe:
            out.append(safe)
    logger.warning("Pricing leak scrubbed from outbound text")
    return "\n".join(out)


def scrub_lines(lines: Iterable[str]) -> List[str]:
    out: List[str] = []
    for line in lines:
        if not contains_pricing_leak(line):
            out.append(line)
        elif SAFE_TOTAL_SENTENCE not in out:
            out.append(SAFE_TOTAL_SENTENCE)
    return out


def is_pricing_formula_question(message: str) -> bool:
    text = message or ""
    if not _PRICE_INTENT.search(text) and not re.search(r"calcul", text, re.IGNORECASE):
        return False
    return any(p.search(text) for p in _FORMULA_INTENT)
