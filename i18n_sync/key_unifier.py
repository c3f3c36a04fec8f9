"""
Unifies keys from code, stores and the default pack into one key set with a
resolved source text and an owning origin per key.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from i18n_sync.locale_normalizer import canonicalize, humanize_key, looks_machine_key
from i18n_sync.pattern_extractor import MAIN_ORIGIN
from i18n_sync.store import NamespaceId, TranslationStore

logger = logging.getLogger(__name__)

SAFE_IDENTIFIER = re.compile(r'^[A-Za-z0-9_-]+$')

# lang -> namespace -> key -> text, keys regrouped by the namespace they belong to
ExistingMaps = Dict[str, Dict[NamespaceId, Dict[str, str]]]

# lang -> namespace of the file -> key -> text, as each file holds it
StoreFiles = Dict[str, Dict[NamespaceId, Dict[str, str]]]


class SourceTier(IntEnum):
    """Where a key's source text came from. Lower is more authoritative."""
    REFERENCE = 1
    DEFAULT_PACK = 2
    OTHER_LANGUAGE = 3
    KEY = 4


def split_namespace(full_key: str) -> Tuple[Optional[str], str]:
    """
    Split ``full_key`` at its first dot when the prefix is a safe identifier.

    ``split_namespace("auth.failed") == ("auth", "failed")``;
    ``split_namespace("Sure? Yes.") == (None, "Sure? Yes.")``.
    """
    prefix, sep, rest = full_key.partition('.')
    if sep and rest and SAFE_IDENTIFIER.match(prefix):
        return prefix, rest
    return None, full_key


def namespace_for_key(full_key: str, origin: str) -> Tuple[NamespaceId, str]:
    """Namespace and in-namespace key for ``full_key``. Always recomputed, never cached."""
    prefix, rest = split_namespace(full_key)
    if prefix is None:
        return NamespaceId.flat(origin), full_key
    return NamespaceId(origin, prefix), rest


@dataclass
class UnifiedKeys:
    all_keys: List[str] = field(default_factory=list)
    source_text: Dict[str, str] = field(default_factory=dict)
    origins: Dict[str, str] = field(default_factory=dict)
    source_tiers: Dict[str, SourceTier] = field(default_factory=dict)

    def namespace_of(self, full_key: str) -> Tuple[NamespaceId, str]:
        return namespace_for_key(full_key, self.origins.get(full_key, MAIN_ORIGIN))

    def is_derived(self, full_key: str) -> bool:
        """True when no store or pack supplied text for this key."""
        return self.source_tiers.get(full_key) is SourceTier.KEY


def derive_source_from_key(full_key: str, reference_language: str) -> str:
    if looks_machine_key(full_key):
        return humanize_key(full_key, reference_language)
    return full_key


def load_store_files(stores: Sequence[TranslationStore], languages: Iterable[str]) -> StoreFiles:
    """Read every store file for every language, keyed by the namespace of the file itself."""
    files: StoreFiles = {}
    for lang in dict.fromkeys(canonicalize(lang) for lang in languages):
        per_lang = files.setdefault(lang, {})
        for store in stores:
            for namespace in store.list_namespaces(lang):
                per_lang[namespace] = store.read_map(lang, namespace)
    return files


def regroup_by_namespace(files: StoreFiles) -> ExistingMaps:
    """
    Re-key store file contents by the namespace each key belongs to.

    Entries go through ``namespace_for_key`` so a flat-file key such as
    ``auth.failed`` counts as present in the ``auth`` namespace. The flat
    file's own content is unchanged in ``files``; ``build_final_maps`` writes
    against that.
    """
    existing: ExistingMaps = {}
    for lang, namespaces in files.items():
        per_lang = existing.setdefault(lang, {})
        for file_namespace, entries in namespaces.items():
            for key, value in entries.items():
                namespace, in_namespace_key = namespace_for_key(file_namespace.full_key(key), file_namespace.origin)
                per_lang.setdefault(namespace, {}).setdefault(in_namespace_key, value)
    return existing


def _full_key_index(existing: ExistingMaps) -> Dict[str, Dict[str, str]]:
    # lang -> full_key -> first non-empty text
    index: Dict[str, Dict[str, str]] = {}
    for lang, namespaces in existing.items():
        bucket = index.setdefault(lang, {})
        for namespace in sorted(namespaces):
            for key, value in namespaces[namespace].items():
                if value != "":
                    bucket.setdefault(namespace.full_key(key), value)
    return index


def unify(
        code_keys: Mapping[str, str],
        existing: ExistingMaps,
        default_keys: Mapping[str, str],
        reference_language: str,
        target_languages: Sequence[str],
        main_origin: str = MAIN_ORIGIN
) -> UnifiedKeys:
    """
    Build the deduplicated key set for this run.

    Args:
        code_keys: key -> origin, from the code scan.
        existing: Existing store contents (see ``regroup_by_namespace``).
        default_keys: key -> reference text, from the framework default pack.
        reference_language: The language source text is written in.
        target_languages: Languages being translated into, in priority order.
        main_origin: Origin given to default-pack keys.

    Returns:
        UnifiedKeys with a source text, origin and source tier for every key.
    """
    unified = UnifiedKeys()
    reference = canonicalize(reference_language)

    # Stores define ownership; first writer wins.
    for lang in sorted(existing):
        for namespace in sorted(existing[lang]):
            for key in existing[lang][namespace]:
                unified.origins.setdefault(namespace.full_key(key), namespace.origin)
    for key in default_keys:
        unified.origins.setdefault(key, main_origin)
    for key, origin in code_keys.items():
        unified.origins.setdefault(key, origin)

    unified.all_keys = sorted(unified.origins)

    index = _full_key_index(existing)
    other_languages = [canonicalize(lang) for lang in target_languages if canonicalize(lang) != reference]

    for full_key in unified.all_keys:
        text = index.get(reference, {}).get(full_key)
        tier = SourceTier.REFERENCE
        if text is None:
            pack_text = default_keys.get(full_key)
            if pack_text:
                text, tier = pack_text, SourceTier.DEFAULT_PACK
        if text is None:
            for lang in other_languages:
                candidate = index.get(lang, {}).get(full_key)
                if candidate is not None:
                    text, tier = candidate, SourceTier.OTHER_LANGUAGE
                    break
        if text is None:
            text, tier = derive_source_from_key(full_key, reference), SourceTier.KEY
        unified.source_text[full_key] = text
        unified.source_tiers[full_key] = tier

    logger.info(
        "Unified %d key(s): %d from code, %d from default pack.",
        len(unified.all_keys), len(code_keys), len(default_keys)
    )
    return unified


def group_keys_by_namespace(unified: UnifiedKeys, keys: Optional[Iterable[str]] = None) -> Dict[NamespaceId, List[str]]:
    """Group full keys by namespace; values are in-namespace keys in sorted order."""
    groups: Dict[NamespaceId, List[str]] = {}
    for full_key in (unified.all_keys if keys is None else keys):
        namespace, key = unified.namespace_of(full_key)
        groups.setdefault(namespace, []).append(key)
    return {namespace: sorted(groups[namespace]) for namespace in sorted(groups)}
