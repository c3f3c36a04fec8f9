"""
Locale tag normalization and script-aware text humanizing.

Everything in here is pure: no I/O, no logging, no exceptions for bad input.
"""
import re
from enum import Enum
from typing import Dict, List


class ScriptFamily(str, Enum):
    LATIN = "latin"
    CYRILLIC = "cyrillic"
    BRAHMIC = "brahmic"
    RTL = "rtl"
    CJK = "cjk"


# Language subtags per script family. Anything not listed is treated as latin.
SCRIPT_FAMILY_PREFIXES: Dict[ScriptFamily, List[str]] = {
    ScriptFamily.CJK: ["zh", "ja", "ko", "zh_hant", "zh_hans", "yue"],
    ScriptFamily.RTL: ["ar", "he", "fa", "ur", "ps", "dv", "yi", "sd", "ug"],
    ScriptFamily.BRAHMIC: ["hi", "gu", "bn", "ta", "te", "ml", "kn", "mr", "ne", "si", "pa", "or", "as", "th", "lo", "km", "my"],
    ScriptFamily.CYRILLIC: ["ru", "uk", "be", "bg", "sr", "mk", "kk", "ky", "uz", "az", "mn", "tg"],
}

# Sorted longest first so "zh_hant" wins over "zh"
_PREFIX_TABLE = sorted(
    ((prefix, family) for family, prefixes in SCRIPT_FAMILY_PREFIXES.items() for prefix in prefixes),
    key=lambda item: len(item[0]),
    reverse=True,
)

_CAMEL_BOUNDARY = re.compile(r'([a-z0-9])([A-Z])')
_SEPARATOR_RUN = re.compile(r'[._\-]+')
_WHITESPACE_RUN = re.compile(r'\s+')
_LATIN_LETTER = re.compile(r'[A-Za-zÀ-ɏ]')
_MACHINE_KEY_SHAPE = re.compile(r'^[a-z0-9._-]+$')
_CAMEL_OR_PASCAL = re.compile(r'^[A-Za-z][a-z0-9]*(?:[A-Z][a-z0-9]*)+$')


def canonicalize(tag: str) -> str:
    """
    Normalize a locale tag to ``ll`` or ``ll_RR`` form.

    ``canonicalize("EN-us") == "en_US"``. Applying it twice gives the same result.
    """
    if not tag:
        return ""
    normalized = tag.strip().replace('-', '_')
    normalized = re.sub(r'_+', '_', normalized).strip('_')
    if not normalized:
        return ""
    language, _, rest = normalized.partition('_')
    if not rest:
        return language.lower()
    return f"{language.lower()}_{rest.upper()}"


def locales_equal(first: str, second: str) -> bool:
    return canonicalize(first) == canonicalize(second)


def script_family(tag: str) -> ScriptFamily:
    """Longest-prefix match of the canonical tag against the script tables; latin by default."""
    lowered = canonicalize(tag).lower()
    for prefix, family in _PREFIX_TABLE:
        if lowered == prefix or lowered.startswith(prefix + "_"):
            return family
    return ScriptFamily.LATIN


def _title_case(text: str) -> str:
    # str.title() would lowercase the tail of acronyms like "URL"
    return ' '.join(word[:1].upper() + word[1:] for word in text.split(' '))


def _sentence_case(text: str) -> str:
    lowered = text.lower()
    return lowered[:1].upper() + lowered[1:]


def humanize(text: str, lang: str) -> str:
    """
    Turn an identifier-like string into display text for ``lang``.

    ``humanize("displayName", "en") == "Display Name"``,
    ``humanize("display_name", "fr") == "Display name"``.
    Scripts without letter case are returned split and cleaned but otherwise untouched.
    """
    if text is None:
        return ""
    try:
        spaced = _CAMEL_BOUNDARY.sub(r'\1 \2', text)
        spaced = _SEPARATOR_RUN.sub(' ', spaced)
        spaced = _WHITESPACE_RUN.sub(' ', spaced).strip()
        if not spaced:
            return text.strip()

        family = script_family(lang)
        if family in (ScriptFamily.CJK, ScriptFamily.RTL, ScriptFamily.BRAHMIC):
            return spaced
        if not _LATIN_LETTER.search(spaced):
            return spaced
        if canonicalize(lang).startswith("en"):
            return _title_case(spaced)
        return _sentence_case(spaced)
    except (TypeError, AttributeError):
        return str(text).strip()


def looks_machine_key(key: str) -> bool:
    """True for identifiers like ``user_profile.display_name`` or ``saveChanges``, False for prose."""
    if not key or ' ' in key.strip():
        return False
    if '.' in key or '_' in key:
        return True
    if re.search(r'[a-z][A-Z]', key):
        return True
    return bool(_MACHINE_KEY_SHAPE.match(key) or _CAMEL_OR_PASCAL.match(key))


def display_text_from_key(key: str) -> str:
    """The human-facing part of a key: after any ``pkg::`` prefix, after the last dot."""
    if '::' in key:
        key = key.split('::', 1)[1]
    if '.' in key:
        key = key.rsplit('.', 1)[1]
    return key


def humanize_key(key: str, lang: str) -> str:
    """
    Display text for a machine key in ``lang``.

    A key whose display part is empty, such as ``"Saved."``, is kept whole.
    """
    display = display_text_from_key(key).strip()
    if not display:
        return key.strip()
    return humanize(display, lang) or key.strip()
