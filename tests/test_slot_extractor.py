import pytest

from appointment_agent.errors import GenerationError
from appointment_agent.models.booking import BookingDraft
from appointment_agent.services.locales import get_locale_rules
from appointment_agent.services.slot_extractor import DeterministicStrategy, SlotExtractor

from conftest import ScriptedModel


class TestDeterministicStrategy:
    def setup_method(self):
        self.strategy = DeterministicStrategy()

    def extract(self, utterance, locale="en-US"):
        return self.strategy.extract(utterance, get_locale_rules(locale))

    def test_full_introduction(self):
        result = self.extract("Hi, my name is Jordan Lee and my email is jordan@example.com")
        assert result.name == "Jordan Lee"
        assert result.email == "jordan@example.com"

    def test_lowercase_name_is_title_cased_for_direct_introductions(self):
        assert self.extract("my name is maria garcia").name == "Maria Garcia"

    def test_casual_phrase_needs_a_capitalised_name(self):
        assert self.extract("I'm Priya, nice to meet you").name == "Priya"
        assert self.extract("i'm looking for help with seo").name is None

    def test_name_stops_at_stopwords(self):
        assert self.extract("This is Sam from Acme").name == "Sam"

    def test_email_embedded_letters_are_not_a_name(self):
        assert self.extract("reach me at i.am.ted@example.com").name is None

    def test_spoken_email(self):
        assert self.extract("it's john dot smith at example dot com").email == "john.smith@example.com"

    def test_us_phone_normalised(self):
        assert self.extract("you can reach me on (512) 555-0100").phone == "+15125550100"
        assert self.extract("it's +1 512.555.0100").phone == "+15125550100"

    def test_service_keyword_uses_catalog_order(self):
        # "social media" comes before "ads" in the catalog
        assert self.extract("I need social media ads").service == "Social Media Marketing"
        assert self.extract("Can you redo our website?").service == "Web Design"
        assert self.extract("Help with search engine optimization").service == "SEO"

    def test_service_keywords_match_whole_words_only(self):
        assert self.extract("I read the loads of reviews").service is None

    @pytest.mark.parametrize(
        "utterance,expected",
        [
            ("how about tomorrow", "Tomorrow"),
            ("next Friday works", "Friday"),
            ("on 2026-11-03 please", "2026-11-03"),
            ("whenever suits", None),
        ],
    )
    def test_dates(self, utterance, expected):
        assert self.extract(utterance).date == expected

    @pytest.mark.parametrize(
        "utterance,expected",
        [
            ("at 2:30 pm", "2:30 PM"),
            ("at 2pm", "2 PM"),
            ("around 10 a.m.", "10 AM"),
            ("11:00 AM is fine", "11 AM"),
            ("13 pm", None),
        ],
    )
    def test_times(self, utterance, expected):
        assert self.extract(utterance).time == expected

    def test_daypart_overrides_clock_time(self):
        assert self.extract("tomorrow morning at 10am").time == "Morning (9-12)"
        assert self.extract("Friday evening").time == "Evening (5-7)"

    def test_nigerian_english_introduction_and_phone(self):
        result = self.extract("Na me be Chidi Okafor, my number na 0803 123 4567", locale="en-NG")
        assert result.name == "Chidi Okafor"
        assert result.phone == "+2348031234567"

    def test_indian_english_introduction_and_phone(self):
        result = self.extract("Myself Ravi Kumar, phone 98765 43210", locale="en-IN")
        assert result.name == "Ravi Kumar"
        assert result.phone == "+919876543210"

    def test_uk_mobile(self):
        assert self.extract("my mobile is 07700 900123", locale="en-GB").phone == "+447700900123"

    def test_spanish_introduction_and_spoken_email(self):
        result = self.extract("Me llamo Lucía Fernández, mi correo es lucia arroba correo punto es", locale="es-MX")
        assert result.name == "Lucía Fernández"
        assert result.email == "lucia@correo.es"

    def test_french_introduction(self):
        assert self.extract("Bonjour, je m'appelle Élodie", locale="fr-FR").name == "Élodie"

    def test_german_introduction(self):
        assert self.extract("Mein Name ist Jonas Weber", locale="de").name == "Jonas Weber"

    @pytest.mark.parametrize(
        "utterance, locale",
        [
            ("Please call me tomorrow morning", "en-US"),
            ("Can you call me back on Monday", "en-US"),
            ("book SEO for myself on Monday", "en-IN"),
            ("main SEO chahta hoon", "hi-IN"),
            ("mujhe Monday ko appointment chahiye", "hi-IN"),
            ("Call me Monday about branding", "en-US"),
        ],
    )
    def test_first_person_phrases_without_a_name_yield_none(self, utterance, locale):
        assert self.extract(utterance, locale=locale).name is None

    def test_hindi_introduction_with_capitalised_name(self):
        assert self.extract("main Ravi hoon", locale="hi-IN").name == "Ravi"
        assert self.extract("mera naam priya sharma", locale="hi-IN").name == "Priya Sharma"

    def test_english_patterns_still_apply_in_other_locales(self):
        assert self.extract("My name is Anna", locale="nl").name == "Anna"


def test_locale_resolution_falls_back_by_language_then_default():
    assert get_locale_rules("en-NG").tag == "en-NG"
    assert get_locale_rules("pt_BR").tag == "pt-BR"
    assert get_locale_rules("fr-CA").tag == "fr"
    assert get_locale_rules("en-ZA").tag == "en-US"
    assert get_locale_rules("sw-KE").tag == "en-US"
    assert get_locale_rules(None).tag == "en-US"


class TestSlotExtractor:
    @pytest.mark.asyncio
    async def test_structured_strategy_is_preferred_when_model_available(self):
        model = ScriptedModel(
            extraction={
                "name": "Jordan Lee",
                "email": "jordan@gmial.com",
                "phone": "512 555 0100",
                "service": "search engine optimization",
                "date": "Monday",
                "time": "2 PM",
            }
        )
        extractor = SlotExtractor(model, default_locale="en-US")

        result = await extractor.extract("book me in", [], BookingDraft())

        assert model.extraction_calls == 1
        assert result.service == "SEO"
        assert result.phone == "+15125550100"
        assert result.email == "jordan@gmial.com"

        draft = await extractor.extract_and_merge("book me in", [], BookingDraft())
        assert draft.email == "jordan@gmail.com"

    @pytest.mark.asyncio
    async def test_structured_drops_unknown_service_and_bad_email(self):
        model = ScriptedModel(extraction={"service": "plumbing", "email": "not an email"})
        result = await SlotExtractor(model).extract("hello", [], BookingDraft())
        assert result.service is None
        assert result.email is None

    @pytest.mark.asyncio
    async def test_generation_error_falls_back_to_patterns(self):
        model = ScriptedModel(extraction=GenerationError("rate limited"))
        extractor = SlotExtractor(model, default_locale="en-US")

        result = await extractor.extract("My name is Ada, ada@example.com, SEO please", [], BookingDraft())

        assert model.extraction_calls == 1
        assert result.name == "Ada"
        assert result.email == "ada@example.com"
        assert result.service == "SEO"

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back_to_patterns(self):
        model = ScriptedModel(extraction={"name": ["not", "a", "string"]})
        result = await SlotExtractor(model).extract("call me Ada", [], BookingDraft())
        assert result.name == "Ada"

    @pytest.mark.asyncio
    async def test_unavailable_model_skips_structured_call(self):
        model = ScriptedModel(extraction={"name": "Nobody"}, available=False)
        result = await SlotExtractor(model).extract("call me Ada", [], BookingDraft())
        assert model.extraction_calls == 0
        assert result.name == "Ada"

    @pytest.mark.asyncio
    async def test_request_locale_overrides_default(self):
        extractor = SlotExtractor(None, default_locale="en-US")
        result = await extractor.extract("Na me be Tunde", [], BookingDraft(), locale="en-NG")
        assert result.name == "Tunde"
