import json
from typing import Iterable, Optional

DEFAULT_LOCALE = "en"

LOCALE_LABELS: dict[str, str] = {
    "en": "English",
    "de": "Deutsch",
    "es": "Español",
    "fr": "Français",
    "it": "Italiano",
    "pt": "Português",
}

SUPPORTED_LOCALES: tuple[str, ...] = tuple(LOCALE_LABELS)

def is_translatable_locale(value, base_locale: str = DEFAULT_LOCALE) -> bool:
    return isinstance(value, str) and value in LOCALE_LABELS and value != base_locale

def locale_label(locale: str) -> str:
    return LOCALE_LABELS.get(locale, locale)

def parse_enabled_locales(value: Optional[str]) -> list[str]:
    """
    Parses the ENABLED_LOCALES setting.

    Accepts a JSON array ('["en", "de"]') or a comma separated list
    ("en,de"). Unknown codes are dropped and the order always follows
    SUPPORTED_LOCALES. Missing or malformed values enable every locale.
    """
    if not value or not value.strip():
        return list(SUPPORTED_LOCALES)

    raw = value.strip()
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return list(SUPPORTED_LOCALES)
        if not isinstance(parsed, list):
            return list(SUPPORTED_LOCALES)
        candidates = [item for item in parsed if isinstance(item, str)]
    else:
        candidates = [item.strip() for item in raw.split(",")]

    return [locale for locale in SUPPORTED_LOCALES if locale in candidates]

def translatable_locales(locales: Iterable[str], base_locale: str = DEFAULT_LOCALE) -> tuple[str, ...]:
    """Enabled locales minus the base locale, deduplicated, order preserved."""
    seen: list[str] = []
    for locale in locales:
        if is_translatable_locale(locale, base_locale) and locale not in seen:
            seen.append(locale)
    return tuple(seen)
