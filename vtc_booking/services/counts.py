"""Passenger and bag counts pulled out of free French text."""
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from vtc_booking.core.enums import ChatRole
from vtc_booking.schemas.chat import ChatTurn

NUMBER_WORDS = {
    "un": 1,
    "une": 1,
    "deux": 2,
    "trois": 3,
    "quatre": 4,
    "cinq": 5,
    "six": 6,
    "sept": 7,
    "huit": 8,
    "neuf": 9,
    "dix": 10,
}

MAX_COUNT = 49

_NUMBER = r"(\d{1,2}|" + "|".join(NUMBER_WORDS) + r")"
_PAX_KEYS = r"pax|passagers?|personnes?|adultes?|enfants?"
_BAG_KEYS = r"valises?|bagages?|sacs?"
_PAX_WORDS = rf"(?:{_PAX_KEYS})"
_BAG_WORDS = rf"(?:{_BAG_KEYS})"

PASSENGERS_RE = re.compile(rf"\b{_NUMBER}\s*{_PAX_WORDS}\b")
BAGS_RE = re.compile(rf"\b{_NUMBER}\s*{_BAG_WORDS}\b")
PASSENGERS_LABEL_RE = re.compile(rf"\bpassagers?\s*:\s*{_NUMBER}\b")
BAGS_LABEL_RE = re.compile(rf"\b(?:bagages?|valises?)\s*:\s*{_NUMBER}\b")
SHORTHAND_RE = re.compile(r"^\s*(\d{1,2})\s*/\s*(\d{1,2})\s*$")
BARE_NUMBER_RE = re.compile(rf"\b{_NUMBER}\b")
COUNT_KEYWORDS_RE = re.compile(rf"\b(?:{_PAX_KEYS}|{_BAG_KEYS})\b")

MONTH_RE = re.compile(
    r"(janv|janvier|fevr|févr|fevrier|février|mars|avr|avril|mai|juin|juil|juillet|"
    r"aout|août|sept|septembre|oct|octobre|nov|novembre|dec|déc|decembre|décembre)"
)
DATE_TIME_PATTERNS = [
    re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b"),
    re.compile(r"\b\d{1,2}\s*[.-]\s*\d{1,2}\b"),
    re.compile(r"\b\d{1,2}\s*/\s*\d{1,2}\b"),
    re.compile(r"\b\d{1,2}\s*h\s*\d{0,2}\b"),
    re.compile(r"\b\d{1,2}:\d{2}\b"),
    re.compile(r"\ble\s+\d{1,2}\b"),
]

# "combien de passagers", "nombre de bagages", or the correction prompt itself
ASKED_FOR_COUNTS_RE = re.compile(
    r"(combien|nombre)\b.*\b(passagers?|personnes?|bagages?|valises?)|passagers?\s*:\s*x",
    re.IGNORECASE,
)


@dataclass
class Counts:
    passengers: Optional[int] = None
    bags: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.passengers is not None and self.bags is not None


def word_to_number(word: str) -> Optional[int]:
    token = (word or "").strip().lower()
    if token.isdigit():
        return int(token)
    return NUMBER_WORDS.get(token)


def is_count_like(message: str) -> bool:
    text = (message or "").lower()
    return bool(SHORTHAND_RE.match(text) or COUNT_KEYWORDS_RE.search(text))


def is_date_like(message: str) -> bool:
    """True when the text reads as a date or time rather than counts.

    Explicit count wording wins: "2 pax le 12" is counts, "le 20 à 14h30" is not.
    """
    text = (message or "").lower()
    if is_count_like(text):
        return False
    if MONTH_RE.search(text):
        return True
    return any(p.search(text) for p in DATE_TIME_PATTERNS)


def assistant_asked_for_counts(history: Sequence[ChatTurn]) -> bool:
    for turn in reversed(history or []):
        if turn.role == ChatRole.ASSISTANT:
            return bool(ASKED_FOR_COUNTS_RE.search(turn.content))
    return False


def valid_passengers(value: Optional[int]) -> Optional[int]:
    return value if value is not None and 0 < value <= MAX_COUNT else None


def valid_bags(value: Optional[int]) -> Optional[int]:
    return value if value is not None and 0 <= value <= MAX_COUNT else None


def _first(pattern: re.Pattern, text: str) -> Optional[int]:
    match = pattern.search(text)
    return word_to_number(match.group(1)) if match else None


def extract_counts(message: str, history: Sequence[ChatTurn] = ()) -> Counts:
    text = (message or "").lower()
    counts = Counts(
        passengers=valid_passengers(_first(PASSENGERS_RE, text)),
        bags=valid_bags(_first(BAGS_RE, text)),
    )

    if counts.passengers is None:
        counts.passengers = valid_passengers(_first(PASSENGERS_LABEL_RE, text))
    if counts.bags is None:
        counts.bags = valid_bags(_first(BAGS_LABEL_RE, text))

    if counts.passengers is not None or counts.bags is not None:
        return counts
    if not assistant_asked_for_counts(history):
        return counts

    shorthand = SHORTHAND_RE.match(text)
    if shorthand:
        return Counts(passengers=valid_passengers(int(shorthand.group(1))), bags=valid_bags(int(shorthand.group(2))))

    if is_date_like(text):
        return counts

    numbers = [word_to_number(m.group(1)) for m in BARE_NUMBER_RE.finditer(text)][:4]
    if len(numbers) >= 2:
        counts.passengers = valid_passengers(numbers[0])
        counts.bags = valid_bags(numbers[1])
    return counts
