"""Locale-keyed pattern tables for the deterministic slot extractor.

Each entry bundles the self-introduction phrases, phone formats and spoken-email
rewrites for one locale tag. ``get_locale_rules`` resolves a caller-supplied tag
(``en-NG``, ``fr``, ``pt-BR`` ...) to an entry once per utterance.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple

DEFAULT_LOCALE = "en-US"

# Name capture: one or two words, letters plus apostrophes and hyphens.
_NAME_WORD = r"[^\W\d_][^\W\d_'\-]*(?:['\-][^\W\d_]+)*"
_CAPITALISED_WORD = r"[A-ZÀ-ÖØ-Þ][^\W\d_'\-]*(?:['\-][^\W\d_]+)*"


def _direct(phrase: str) -> Pattern[str]:
    """Explicit introduction ("my name is x"): any casing of the name is accepted."""
    return re.compile(rf"(?i:\b{phrase})\s+({_NAME_WORD}(?:\s+{_NAME_WORD})?)", re.UNICODE)


def _casual(phrase: str) -> Pattern[str]:
    """Ambiguous introduction ("I'm x"): only a capitalised name counts."""
    return re.compile(
        rf"(?i:\b{phrase})\s+({_CAPITALISED_WORD}(?:\s+{_CAPITALISED_WORD})?)",
        re.UNICODE,
    )


@dataclass(frozen=True)
class PhoneFormat:
    pattern: Pattern[str]
    country_code: str
    national_length: int
    trunk_prefix: str = ""

    def normalize(self, raw: str) -> Optional[str]:
        digits = re.sub(r"\D", "", raw)
        if not digits:
            return None
        if raw.strip().startswith("+") or (
            digits.startswith(self.country_code) and len(digits) == len(self.country_code) + self.national_length
        ):
            return f"+{digits}"
        if self.trunk_prefix and digits.startswith(self.trunk_prefix):
            digits = digits[len(self.trunk_prefix):]
        if len(digits) == self.national_length:
            return f"+{self.country_code}{digits}"
        return None


@dataclass(frozen=True)
class LocaleRules:
    tag: str
    name_patterns: Tuple[Pattern[str], ...]
    phone_formats: Tuple[PhoneFormat, ...]
    spoken_email: Tuple[Tuple[Pattern[str], str], ...] = field(default_factory=tuple)


_ENGLISH_NAMES: Tuple[Pattern[str], ...] = (
    _direct(r"my name is"),
    _direct(r"my name's"),
    _casual(r"call me"),
    _casual(r"i'm"),
    _casual(r"i am"),
    _casual(r"this is"),
)

_ENGLISH_SPOKEN_EMAIL: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"\s+at\s+the\s+rate\s+(?:of\s+)?", re.I), "@"),
    (re.compile(r"(?<=\w)\s+at\s+(?=[\w-]+\s*(?:dot|\.)\s*\w)", re.I), "@"),
    (re.compile(r"(?<=\w)\s+dot\s+(?=\w)", re.I), "."),
    (re.compile(r"(?<=\w)\s+underscore\s+(?=\w)", re.I), "_"),
)

_US_PHONE = PhoneFormat(
    pattern=re.compile(r"(?<!\d)(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)"),
    country_code="1",
    national_length=10,
)
_UK_PHONE = PhoneFormat(
    pattern=re.compile(r"(?<!\d)(?:\+?44\s?7\d{3}|07\d{3})\s?\d{3}\s?\d{3}(?!\d)"),
    country_code="44",
    national_length=10,
    trunk_prefix="0",
)
_NG_PHONE = PhoneFormat(
    pattern=re.compile(r"(?<!\d)(?:\+?234[\s-]?|0)[789][01]\d[\s-]?\d{3}[\s-]?\d{4}(?!\d)"),
    country_code="234",
    national_length=10,
    trunk_prefix="0",
)
_IN_PHONE = PhoneFormat(
    pattern=re.compile(r"(?<!\d)(?:\+?91[\s-]?|0)?[6-9]\d{4}[\s-]?\d{5}(?!\d)"),
    country_code="91",
    national_length=10,
    trunk_prefix="0",
)
_AU_PHONE = PhoneFormat(
    pattern=re.compile(r"(?<!\d)(?:\+?61\s?4|04)\d{2}[\s-]?\d{3}[\s-]?\d{3}(?!\d)"),
    country_code="61",
    national_length=9,
    trunk_prefix="0",
)
_EU_PHONE = {
    "es": PhoneFormat(re.compile(r"(?<!\d)(?:\+?34[\s-]?)?[67]\d{2}[\s-]?\d{3}[\s-]?\d{3}(?!\d)"), "34", 9),
    "fr": PhoneFormat(re.compile(r"(?<!\d)(?:\+?33[\s.-]?|0)[67](?:[\s.-]?\d{2}){4}(?!\d)"), "33", 9, "0"),
    "de": PhoneFormat(re.compile(r"(?<!\d)(?:\+?49[\s-]?|0)1[5-7]\d[\s-]?\d{7,8}(?!\d)"), "49", 11, "0"),
    "it": PhoneFormat(re.compile(r"(?<!\d)(?:\+?39[\s-]?)?3\d{2}[\s-]?\d{3}[\s-]?\d{4}(?!\d)"), "39", 10),
    "pt": PhoneFormat(re.compile(r"(?<!\d)(?:\+?351[\s-]?)?9\d{2}[\s-]?\d{3}[\s-]?\d{3}(?!\d)"), "351", 9),
    "br": PhoneFormat(re.compile(r"(?<!\d)(?:\+?55[\s-]?)?\(?\d{2}\)?[\s-]?9\d{4}[\s-]?\d{4}(?!\d)"), "55", 11),
    "nl": PhoneFormat(re.compile(r"(?<!\d)(?:\+?31[\s-]?|0)6[\s-]?\d{8}(?!\d)"), "31", 9, "0"),
}


def _spoken_email(at_words: List[str], dot_words: List[str]) -> Tuple[Tuple[Pattern[str], str], ...]:
    rules = []
    for word in at_words:
        rules.append((re.compile(rf"(?<=\w)\s+{word}\s+(?=\w)", re.I), "@"))
    for word in dot_words:
        rules.append((re.compile(rf"(?<=\w)\s+{word}\s+(?=\w)", re.I), "."))
    return tuple(rules) + _ENGLISH_SPOKEN_EMAIL


def _rules(
    tag: str,
    names: Tuple[Pattern[str], ...] = (),
    phones: Tuple[PhoneFormat, ...] = (_US_PHONE,),
    spoken_email: Tuple[Tuple[Pattern[str], str], ...] = _ENGLISH_SPOKEN_EMAIL,
) -> LocaleRules:
    # Local phrasing first, then the English introductions everyone falls back to
    return LocaleRules(
        tag=tag,
        name_patterns=names + _ENGLISH_NAMES,
        phone_formats=phones,
        spoken_email=spoken_email,
    )


LOCALE_RULES: Dict[str, LocaleRules] = {
    "en-US": _rules("en-US"),
    "en-CA": _rules("en-CA"),
    "en-GB": _rules("en-GB", phones=(_UK_PHONE, _US_PHONE)),
    "en-IE": _rules("en-IE", phones=(_UK_PHONE, _US_PHONE)),
    "en-AU": _rules("en-AU", phones=(_AU_PHONE, _US_PHONE)),
    "en-NG": _rules(
        "en-NG",
        names=(_direct(r"na me be"), _direct(r"my name na"), _direct(r"dem dey call me")),
        phones=(_NG_PHONE, _US_PHONE),
    ),
    "en-IN": _rules(
        "en-IN",
        names=(_direct(r"mera naam"), _casual(r"myself")),
        phones=(_IN_PHONE, _US_PHONE),
    ),
    "hi-IN": _rules(
        "hi-IN",
        names=(_direct(r"mera naam"), _casual(r"mujhe"), _casual(r"main")),
        phones=(_IN_PHONE,),
    ),
    "es": _rules(
        "es",
        names=(_direct(r"me llamo"), _direct(r"mi nombre es"), _casual(r"soy")),
        phones=(_EU_PHONE["es"], _US_PHONE),
        spoken_email=_spoken_email(["arroba"], ["punto"]),
    ),
    "fr": _rules(
        "fr",
        names=(_direct(r"je m'appelle"), _direct(r"mon nom est"), _casual(r"je suis")),
        phones=(_EU_PHONE["fr"],),
        spoken_email=_spoken_email(["arobase"], ["point"]),
    ),
    "de": _rules(
        "de",
        names=(_direct(r"ich heiße"), _direct(r"ich heisse"), _direct(r"mein name ist")),
        phones=(_EU_PHONE["de"],),
        spoken_email=_spoken_email(["at", "ät"], ["punkt"]),
    ),
    "it": _rules(
        "it",
        names=(_direct(r"mi chiamo"), _direct(r"il mio nome è"), _casual(r"sono")),
        phones=(_EU_PHONE["it"],),
        spoken_email=_spoken_email(["chiocciola"], ["punto"]),
    ),
    "pt": _rules(
        "pt",
        names=(_direct(r"meu nome é"), _direct(r"me chamo"), _casual(r"sou")),
        phones=(_EU_PHONE["pt"],),
        spoken_email=_spoken_email(["arroba"], ["ponto"]),
    ),
    "pt-BR": _rules(
        "pt-BR",
        names=(_direct(r"meu nome é"), _direct(r"me chamo"), _casual(r"sou")),
        phones=(_EU_PHONE["br"],),
        spoken_email=_spoken_email(["arroba"], ["ponto"]),
    ),
    "nl": _rules(
        "nl",
        names=(_direct(r"mijn naam is"), _direct(r"ik heet"), _casual(r"ik ben")),
        phones=(_EU_PHONE["nl"],),
        spoken_email=_spoken_email(["apenstaartje"], ["punt"]),
    ),
}


def get_locale_rules(tag: Optional[str]) -> LocaleRules:
    """Resolve a locale tag: exact match, then language prefix, then the default."""
    if tag:
        normalized = tag.replace("_", "-")
        for key, rules in LOCALE_RULES.items():
            if key.lower() == normalized.lower():
                return rules
        language = normalized.split("-")[0].lower()
        if language in LOCALE_RULES:
            return LOCALE_RULES[language]
        if language == "en":
            return LOCALE_RULES[DEFAULT_LOCALE]
    return LOCALE_RULES[DEFAULT_LOCALE]
