import re
from typing import List, Sequence

from vtc_booking.schemas.chat import DecodedReply, StructuredReply
from vtc_booking.schemas.tariff import VehicleQuote
from vtc_booking.services.guard import scrub_leaks, scrub_lines

SECTION_MAX_ITEMS = 7
TARIFF_ROWS_MAX = 12

QUESTIONS_TITLE = "1) Questions manquantes"
RECAP_TITLE = "2) Récap devis (si quote)"
NEXT_STEP_TITLE = "3) Prochaine étape"
TARIFFS_TITLE = "Tarifs calculés (par véhicule):"

NO_QUESTIONS = "(aucune)"
NO_RECAP = "(pas encore de devis)"
DEFAULT_NEXT_STEP = (
    "Remplissez le calculateur, cliquez sur 'Calculer les tarifs', "
    "choisissez un véhicule, puis cliquez sur 'Réserver'."
)


def format_amount(total: float, currency: str) -> str:
    return f"{total:.2f} {currency}"


def tariff_rows(quotes: Sequence[VehicleQuote], currency: str) -> List[str]:
    rows = []
    for quote in quotes:
        label = quote.label or quote.id
        if not label:
            continue
        if quote.is_quote:
            rows.append(f"- {label}: sur devis")
        elif quote.total is not None:
            rows.append(f"- {label}: {format_amount(quote.total, currency)}")
    return rows[:TARIFF_ROWS_MAX]


def tariffs_already_shown(text: str, currency: str) -> bool:
    """True when some line already reads like a tariff row, e.g. "Berline: 36.00 EUR"."""
    amount = re.compile(rf"\d[\d.,]*\s*{re.escape(currency)}(?!\w)", re.IGNORECASE) if currency else None
    for line in (text or "").split("\n"):
        if ":" not in line:
            continue
        if "sur devis" in line.lower() or (amount is not None and amount.search(line)):
            return True
    return False


def _bullets(items: Sequence[str], placeholder: str) -> List[str]:
    cleaned = [s.strip() for s in items if s and s.strip()][:SECTION_MAX_ITEMS]
    return [f"- {s}" for s in scrub_lines(cleaned)] or [f"- {placeholder}"]


def render_sections(reply: StructuredReply) -> str:
    lines = [QUESTIONS_TITLE, *_bullets(reply.questions_missing, NO_QUESTIONS), ""]
    lines += [RECAP_TITLE, *_bullets(reply.recap, NO_RECAP), ""]
    lines += [NEXT_STEP_TITLE, *_bullets(reply.next_step, DEFAULT_NEXT_STEP)]
    return "\n".join(lines).strip()


def format_reply(reply: DecodedReply, quotes: Sequence[VehicleQuote], currency: str = "EUR") -> str:
    """Render a decoded reply as the text shown in the widget."""
    if isinstance(reply, StructuredReply):
        text = reply.answer.strip() if reply.answer.strip() else render_sections(reply)
    else:
        text = reply.text.strip()

    rows = tariff_rows(quotes, currency)
    if rows and not tariffs_already_shown(text, currency):
        text = "\n".join([text, "", TARIFFS_TITLE, *rows]).strip()

    return scrub_leaks(text)
