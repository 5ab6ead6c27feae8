"""
Localized user-facing strings.

Zone descriptions, data-source labels and the disclaimer live in one JSON
file per language under ``blastcasualties/translations`` and are looked up by
dot-separated key, e.g. ``zones.psi5.description``. Missing keys fall back to
English, then to the caller's fallback text.
"""

import json
import logging
from functools import lru_cache

from blastcasualties.config import TRANSLATIONS_DIR

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = 'en'
SUPPORTED_LANGUAGES = ('en', 'el')


@lru_cache(maxsize=None)
def load_strings(language):
    """String table for one language; an unreadable file yields an empty table."""
    path = TRANSLATIONS_DIR / f'{language}.json'
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.warning("Could not load translations for %s: %s", language, e)
        return {}


def _lookup(strings, keys):
    for key in keys:
        if not isinstance(strings, dict) or key not in strings:
            return None
        strings = strings[key]
    return strings


def get_translation(key_path, fallback='', language=None):
    """
    Get a translated string by dot-separated key.

    Args:
        key_path (str): Path to the string, e.g. 'dataSources.overpass'.
        fallback (str): Returned when no language has the key.
        language (str, optional): Language code; unsupported or missing
                                  codes use English.

    Returns:
        str: Translated text or fallback.
    """
    language = language or DEFAULT_LANGUAGE
    if language not in SUPPORTED_LANGUAGES:
        logger.debug("Language %s not supported, using %s", language, DEFAULT_LANGUAGE)
        language = DEFAULT_LANGUAGE

    keys = key_path.split('.')
    for candidate in dict.fromkeys((language, DEFAULT_LANGUAGE)):
        value = _lookup(load_strings(candidate), keys)
        if value is not None:
            return value
    return fallback
