import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from i18n_sync.key_unifier import ExistingMaps, StoreFiles
from i18n_sync.locale_normalizer import canonicalize, humanize_key, looks_machine_key
from i18n_sync.store import NamespaceId
from i18n_sync.sync_policy import SyncMode

if TYPE_CHECKING:
    from i18n_sync.orchestrator import BatchItem

logger = logging.getLogger(__name__)

# Substitution tokens that must survive translation: :name, {name}, %s / %1$d, {0}
PLACEHOLDER_PATTERNS = [
    re.compile(r':[a-zA-Z_]\w*'),
    re.compile(r'\{[a-zA-Z_]\w*\}'),
    re.compile(r'%(?:\d+\$)?[sdxXoeEfFgGaAcpn%]'),
    re.compile(r'\{\d+\}'),
]

_PLURAL_RANGE_SHAPE = re.compile(r'\{[0-9]+\}.*\|.*\[\d+,.*\]', re.DOTALL)
_PLURAL_EXACT_SHAPE = re.compile(r'\{[0-9]+\}.*\|.*\{[0-9]+\}.*\|', re.DOTALL)

# FallbackEvent reasons
MISSING = "missing"
ECHOED_KEY = "echoed_key"
PLACEHOLDER_MISMATCH = "placeholder_mismatch"


@dataclass(frozen=True)
class FallbackEvent:
    """A (key, language) pair whose candidate was replaced by fallback text."""
    key: str
    language: str
    reason: str


def extract_placeholders(text: str) -> Counter:
    """Count every placeholder token occurrence in ``text``."""
    tokens: Counter = Counter()
    if not text:
        return tokens
    for pattern in PLACEHOLDER_PATTERNS:
        tokens.update(pattern.findall(text))
    return tokens


def find_missing_placeholders(source_text: str, candidate: str) -> List[str]:
    """
    Tokens whose occurrence count in ``candidate`` is lower than in ``source_text``.
    Reordering is allowed; extra tokens in the candidate are not reported.
    """
    source_tokens = extract_placeholders(source_text)
    candidate_tokens = extract_placeholders(candidate)
    return sorted(token for token, count in source_tokens.items() if candidate_tokens[token] < count)


def has_placeholder_mismatch(source_text: str, candidate: str) -> bool:
    return bool(find_missing_placeholders(source_text, candidate))


def is_pluralization_string(text: Optional[str]) -> bool:
    """True for count-range strings such as ``{0} No posts|{1} :count post|[2,*] :count posts``."""
    if not text:
        return False
    return bool(_PLURAL_RANGE_SHAPE.search(text) or _PLURAL_EXACT_SHAPE.search(text))


def pluralization_fallback(text: str) -> str:
    """
    Fallback for a pluralization string: the source segments, with their
    count-range markers and placeholders intact and whitespace normalized.
    """
    segments = [re.sub(r'\s+', ' ', segment).strip() for segment in text.split('|')]
    return '|'.join(segments)


def fallback_text(full_key: str, source_text: Optional[str], derived: bool, language: str) -> str:
    """
    Text used when no acceptable candidate exists for (key, language).

    A source text derived from the key itself is humanized again for the
    target language so casing follows that language's script.
    """
    if source_text and is_pluralization_string(source_text):
        return pluralization_fallback(source_text)
    if source_text and not derived:
        return source_text
    if looks_machine_key(full_key):
        return humanize_key(full_key, language)
    return source_text or full_key


def _candidate_for(entry: Any, language: str, single_language: bool) -> Optional[str]:
    if isinstance(entry, dict):
        value = entry.get(language)
        if value is None:
            # Services sometimes answer with a differently spelled tag ("pt-BR" for "pt_BR")
            for tag, text in entry.items():
                if canonicalize(tag) == language:
                    value = text
                    break
        return value if isinstance(value, str) else None
    if isinstance(entry, str) and single_language:
        return entry
    return None


def structure_batch_translations(
        response: Dict[str, Any],
        items: Sequence["BatchItem"],
        target_languages: Sequence[str]
) -> Tuple[Dict[str, Dict[str, str]], List[FallbackEvent]]:
    """
    Turn a raw service response into validated per-language text.

    Args:
        response: full key -> {language: text}, or full key -> text for a single language.
        items: The batch's items.
        target_languages: Languages requested for this batch.

    Returns:
        (language -> in-namespace key -> text, fallback events).
    """
    languages = [canonicalize(lang) for lang in target_languages]
    single_language = len(languages) == 1
    structured: Dict[str, Dict[str, str]] = {lang: {} for lang in languages}
    events: List[FallbackEvent] = []

    for item in items:
        entry = response.get(item.full_key)
        if entry is None and item.key != item.full_key:
            entry = response.get(item.key)
        for lang in languages:
            candidate = _candidate_for(entry, lang, single_language)
            if candidate is not None and candidate.strip() == "":
                candidate = None

            if candidate is None or candidate in (item.full_key, item.key):
                reason = MISSING if candidate is None else ECHOED_KEY
                text = fallback_text(item.full_key, item.source_text, item.derived, lang)
                events.append(FallbackEvent(item.full_key, lang, reason))
            else:
                text = candidate

            if text != item.source_text and has_placeholder_mismatch(item.source_text, text):
                logger.warning(
                    "Placeholder mismatch for '%s' [%s], missing %s; keeping source text.",
                    item.full_key, lang, find_missing_placeholders(item.source_text, text)
                )
                events.append(FallbackEvent(item.full_key, lang, PLACEHOLDER_MISMATCH))
                text = item.source_text

            structured[lang][item.key] = text

    for event in events:
        if event.reason != PLACEHOLDER_MISMATCH:
            logger.warning("Fallback used for '%s' [%s]: %s", event.key, event.language, event.reason)
    return structured, events


# lang -> namespace -> key -> text
Translations = Dict[str, Dict[NamespaceId, Dict[str, str]]]


def merge_batch_translations(
        accumulated: Translations,
        namespace: NamespaceId,
        chunk: Dict[str, Dict[str, str]],
        mode: SyncMode,
        existing: ExistingMaps
) -> int:
    """
    Fold one batch's structured output into the run's accumulated translations.

    In append_missing mode a key already present in this run's output or in
    the persisted store is left alone; other modes overwrite. Returns the
    number of entries written.
    """
    written = 0
    for lang, entries in chunk.items():
        target = accumulated.setdefault(lang, {}).setdefault(namespace, {})
        persisted = existing.get(lang, {}).get(namespace, {})
        for key, text in entries.items():
            if mode is SyncMode.APPEND_MISSING and (key in target or key in persisted):
                continue
            target[key] = text
            written += 1
    return written


def build_final_maps(files: StoreFiles, translations: Translations) -> Translations:
    """
    ``file ∪ new`` for every translation file touched this run.

    ``files`` holds each file's content as read from disk, so keys not
    processed this run keep their persisted value and their file. A key that
    already lives in its origin's flat file (``auth.failed`` in ``de.json``)
    is written back there rather than into its dotted namespace file.
    """
    final: Translations = {}
    for lang, namespaces in translations.items():
        on_disk = files.get(lang, {})
        for namespace, entries in namespaces.items():
            flat = NamespaceId.flat(namespace.origin)
            for key, text in entries.items():
                target, target_key = namespace, key
                if (namespace != flat
                        and key not in on_disk.get(namespace, {})
                        and namespace.full_key(key) in on_disk.get(flat, {})):
                    target, target_key = flat, namespace.full_key(key)
                per_lang = final.setdefault(lang, {})
                if target not in per_lang:
                    per_lang[target] = dict(on_disk.get(target, {}))
                per_lang[target][target_key] = text
    return {
        lang: {namespace: {key: merged[key] for key in sorted(merged)} for namespace, merged in namespaces.items()}
        for lang, namespaces in final.items()
    }
