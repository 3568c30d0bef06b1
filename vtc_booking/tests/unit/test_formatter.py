import pytest

from vtc_booking.schemas.chat import PlainTextReply, StructuredReply
from vtc_booking.schemas.tariff import VehicleQuote
from vtc_booking.services.formatter import (
    DEFAULT_NEXT_STEP,
    NO_QUESTIONS,
    NO_RECAP,
    TARIFFS_TITLE,
    format_amount,
    format_reply,
    render_sections,
    tariff_rows,
    tariffs_already_shown,
)
from vtc_booking.services.guard import SAFE_TOTAL_SENTENCE

QUOTES = [
    VehicleQuote(id="berline", label="Berline 4 places", total=36.0),
    VehicleQuote(id="prestige", label="Classe S", is_quote=True),
    VehicleQuote(id="ghost", label="", total=None),
]


class TestTariffRows:

    def test_amount_has_two_decimals(self):
        assert format_amount(36, "EUR") == "36.00 EUR"
        assert format_amount(47.5, "CHF") == "47.50 CHF"

    def test_rows_skip_unpriced_vehicles(self):
        assert tariff_rows(QUOTES, "EUR") == [
            "- Berline 4 places: 36.00 EUR",
            "- Classe S: sur devis",
        ]

    def test_already_shown(self):
        assert tariffs_already_shown("Berline : 36.00 EUR", "EUR") is True
        assert tariffs_already_shown("Classe S: sur devis", "EUR") is True
        assert tariffs_already_shown("Je vous propose la berline.", "EUR") is False

    @pytest.mark.parametrize("line", ["Heure: 14:30", "Chauffeur : Karim", "Fuseau : Europe/Paris"])
    def test_words_containing_currency_code_are_not_rows(self, line):
        assert tariffs_already_shown(line, "EUR") is False

    def test_symbol_currency(self):
        assert tariffs_already_shown("Berline : 36,00 €", "€") is True


class TestRenderSections:

    def test_empty_sections_get_placeholders(self):
        text = render_sections(StructuredReply())

        assert f"- {NO_QUESTIONS}" in text
        assert f"- {NO_RECAP}" in text
        assert f"- {DEFAULT_NEXT_STEP}" in text
        assert text.startswith("1) Questions manquantes")

    def test_sections_are_bulleted(self):
        text = render_sections(StructuredReply(
            questions_missing=["Quelle date ?"],
            recap=["Trajet : Paris -> Orly"],
            next_step=["Cliquez sur 'Réserver'."],
        ))

        assert "- Quelle date ?" in text
        assert "- Trajet : Paris -> Orly" in text
        assert "- Cliquez sur 'Réserver'." in text

    def test_leaking_recap_line_replaced(self):
        text = render_sections(StructuredReply(recap=["Base 10 + 2 €/km", "Total : 36.00 EUR"]))

        assert f"- {SAFE_TOTAL_SENTENCE}" in text
        assert "€/km" not in text


class TestFormatReply:

    def test_answer_gets_tariff_block(self):
        text = format_reply(StructuredReply(answer="Voici vos options."), QUOTES[:2])

        assert text.startswith("Voici vos options.")
        assert TARIFFS_TITLE in text
        assert "- Berline 4 places: 36.00 EUR" in text
        assert "- Classe S: sur devis" in text

    def test_time_recap_keeps_tariff_block(self):
        text = format_reply(StructuredReply(recap=["Heure: 14:30"]), QUOTES[:1], "EUR")

        assert "- Heure: 14:30" in text
        assert TARIFFS_TITLE in text
        assert "- Berline 4 places: 36.00 EUR" in text

    def test_tariff_block_not_repeated(self):
        text = format_reply(PlainTextReply(text="Berline : 36.00 EUR"), QUOTES[:2])

        assert TARIFFS_TITLE not in text

    def test_sections_used_when_answer_is_empty(self):
        text = format_reply(StructuredReply(questions_missing=["Quelle heure ?"]), [])

        assert "- Quelle heure ?" in text
        assert TARIFFS_TITLE not in text

    def test_plain_text_is_scrubbed(self):
        text = format_reply(PlainTextReply(text="Le prix de base est 10 EUR.\nBonne route"), [])

        assert text == f"{SAFE_TOTAL_SENTENCE}\nBonne route"
