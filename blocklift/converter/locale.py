"""
Locale helpers for blocklift.

Localized fields hold one value per site locale. These helpers build and
complete such per-locale hashes for record create and update calls.
"""

import copy
from typing import Any, Dict, List, Optional

from ..models import DEFAULT_LOCALE_KEY


def fallback_locale(locales: List[str]) -> Optional[str]:
    """Pick the locale to borrow from: `en` when present, otherwise the first one."""
    if "en" in locales:
        return "en"
    return locales[0] if locales else None


def wrap_fields_in_localized_hash(payload: Dict[str, Any], locales: List[str]) -> Dict[str, Any]:
    """
    Give every field the same value in every locale.

    Args:
        payload: Non-localized field values
        locales: Site locales

    Returns:
        Field values as ``{locale: value}`` hashes
    """
    return {
        key: {locale: copy.deepcopy(value) for locale in locales}
        for key, value in payload.items()
    }


def complete_localized_update(original: Any, updated: Dict[str, Any], locales: List[str]) -> Dict[str, Any]:
    """
    Build a localized value that covers every site locale.

    Locales present in `updated` take the new value, the others keep their
    original value, and locales with neither become None.
    """
    original = original if isinstance(original, dict) else {}
    return {
        locale: updated[locale] if locale in updated else original.get(locale)
        for locale in locales
    }


def merge_locale_data(locale_data: Dict[str, Dict[str, Any]], locales: List[str]) -> Dict[str, Dict[str, Any]]:
    """
    Build one complete payload per site locale from partial locale payloads.

    Every field key seen under any locale is filled for every locale from, in
    order: that locale's payload, the ``__default__`` payload, the payload of
    the fallback locale (`en` if it has data, else the first locale with
    data), else None.

    Args:
        locale_data: Locale (or ``__default__``) to block payload
        locales: Site locales

    Returns:
        Locale to payload, for every site locale
    """
    keys: List[str] = []
    for payload in locale_data.values():
        for key in payload:
            if key not in keys:
                keys.append(key)

    # Borrow only from locales that actually hold data
    fallback = fallback_locale([locale for locale in locale_data if locale != DEFAULT_LOCALE_KEY])
    sources = [DEFAULT_LOCALE_KEY, fallback]

    merged = {}
    for locale in locales:
        locale_payload = {}
        for key in keys:
            value = None
            for source in [locale] + sources:
                payload = locale_data.get(source) if source else None
                if payload is not None and key in payload:
                    value = payload[key]
                    break
            locale_payload[key] = copy.deepcopy(value)
        merged[locale] = locale_payload
    return merged
