"""Locale negotiation and the handful of strings the report email needs."""

from __future__ import annotations

import datetime as dt

DEFAULT_LOCALE = "en"

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "email-subject-found-breaches": "Here's your Breachwatch report",
        "email-subject-no-breaches": "No known data breaches found",
    },
    "de": {
        "email-subject-found-breaches": "Hier ist dein Breachwatch-Bericht",
        "email-subject-no-breaches": "Keine bekannten Datenlecks gefunden",
    },
    "fr": {
        "email-subject-found-breaches": "Voici votre rapport Breachwatch",
        "email-subject-no-breaches": "Aucune fuite de données connue",
    },
    "es": {
        "email-subject-found-breaches": "Aquí tienes tu informe de Breachwatch",
        "email-subject-no-breaches": "No se encontraron filtraciones de datos conocidas",
    },
}

_DATE_FORMATS = {
    "en": "%m/%d/%Y",
    "de": "%d.%m.%Y",
    "fr": "%d/%m/%Y",
    "es": "%d/%m/%Y",
}


def _parse_accept_language(header: str) -> list[tuple[str, float]]:
    entries: list[tuple[str, float]] = []
    for position, part in enumerate(header.split(",")):
        tag, _, params = part.strip().partition(";")
        tag = tag.strip()
        if not tag or tag == "*":
            continue
        q = 1.0
        for param in params.split(";"):
            name, _, value = param.strip().partition("=")
            if name == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0
        if q > 0:
            # stable on ties: earlier entries win
            entries.append((tag, q - position * 1e-6))
    entries.sort(key=lambda e: e[1], reverse=True)
    return entries


def negotiate_locales(accept_language: str | None) -> list[str]:
    """Available locales in the order the client prefers them, default last."""
    result: list[str] = []
    for tag, _ in _parse_accept_language(accept_language or ""):
        tag = tag.replace("_", "-").lower()
        for candidate in (tag, tag.split("-", 1)[0]):
            if candidate in MESSAGES and candidate not in result:
                result.append(candidate)
    if DEFAULT_LOCALE not in result:
        result.append(DEFAULT_LOCALE)
    return result


def translate(locales: list[str], key: str) -> str:
    for locale in locales:
        message = MESSAGES.get(locale, {}).get(key)
        if message is not None:
            return message
    return MESSAGES[DEFAULT_LOCALE].get(key, key)


def format_date(value: dt.date, locales: list[str]) -> str:
    for locale in locales:
        fmt = _DATE_FORMATS.get(locale)
        if fmt:
            return value.strftime(fmt)
    return value.strftime(_DATE_FORMATS[DEFAULT_LOCALE])
