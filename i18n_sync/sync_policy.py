"""Decides which keys are (re)translated in a run."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from i18n_sync.key_unifier import ExistingMaps
from i18n_sync.locale_normalizer import canonicalize
from i18n_sync.store import NamespaceId

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    FULL_SYNC = "full_sync"
    APPEND_MISSING = "append_missing"
    REFRESH_EXISTING = "refresh_existing"

    @classmethod
    def parse(cls, value: str) -> "SyncMode":
        normalized = (value or "").strip().lower().replace('-', '_')
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown sync mode '{value}'. Expected one of: {', '.join(m.value for m in cls)}")


@dataclass(frozen=True, order=True)
class WorkItem:
    namespace: NamespaceId
    key: str

    @property
    def full_key(self) -> str:
        return self.namespace.full_key(self.key)


def _present(existing: ExistingMaps, lang: str, item: WorkItem) -> bool:
    return item.key in existing.get(canonicalize(lang), {}).get(item.namespace, {})


def work_items_from_selection(selection: Dict[NamespaceId, Iterable[str]]) -> List[WorkItem]:
    return sorted({WorkItem(namespace, key) for namespace, keys in selection.items() for key in keys})


def check_key_coverage(base_keys: Set[str], target_keys: Set[str]) -> Tuple[Set[str], Set[str]]:
    """
    Compares the keys of a target-language map against the expected keys.

    Args:
        base_keys: Keys expected to exist.
        target_keys: Keys present in the target-language map.

    Returns:
        A tuple containing two sets:
        - missing_keys: Keys present in the base set but missing from the target.
        - extra_keys: Keys present in the target but absent from the base set.
    """
    missing_keys = base_keys - target_keys
    extra_keys = target_keys - base_keys
    return missing_keys, extra_keys


def missing_key_report(
        selected: Sequence[WorkItem],
        existing: ExistingMaps,
        target_languages: Sequence[str]
) -> Dict[NamespaceId, Dict[str, int]]:
    """Per namespace, per target language: how many selected keys have no entry yet."""
    selected_keys: Dict[NamespaceId, Set[str]] = {}
    for item in selected:
        selected_keys.setdefault(item.namespace, set()).add(item.key)

    report: Dict[NamespaceId, Dict[str, int]] = {}
    for namespace in sorted(selected_keys):
        per_lang = report.setdefault(namespace, {})
        for lang in dict.fromkeys(canonicalize(lang) for lang in target_languages):
            stored_keys = set(existing.get(lang, {}).get(namespace, {}))
            missing, extra = check_key_coverage(selected_keys[namespace], stored_keys)
            per_lang[lang] = len(missing)
            if extra:
                logger.debug("%s [%s]: %d stored key(s) outside this run's selection.", namespace.label, lang, len(extra))
    return report


def log_missing_report(report: Dict[NamespaceId, Dict[str, int]]) -> None:
    if not report:
        logger.info("No keys selected; nothing to report.")
        return
    logger.info("Missing keys per namespace and language:")
    for namespace, per_lang in report.items():
        counts = ", ".join(f"{lang}: {count}" for lang, count in per_lang.items())
        logger.info("  %s -> %s", namespace.label, counts)


def plan(
        selected: Sequence[WorkItem],
        existing: ExistingMaps,
        target_languages: Sequence[str],
        mode: SyncMode
) -> List[WorkItem]:
    """
    Build the work set.

    - full_sync: every selected key.
    - append_missing: selected keys missing from at least one target language.
    - refresh_existing: selected keys present in at least one target language.

    An empty result means there is nothing to do, which is a successful outcome.
    """
    if mode is not SyncMode.REFRESH_EXISTING:
        log_missing_report(missing_key_report(selected, existing, target_languages))

    if mode is SyncMode.FULL_SYNC:
        work = list(selected)
    elif mode is SyncMode.APPEND_MISSING:
        work = [item for item in selected
                if any(not _present(existing, lang, item) for lang in target_languages)]
    else:
        work = [item for item in selected
                if any(_present(existing, lang, item) for lang in target_languages)]

    logger.info("Sync mode '%s': %d of %d selected key(s) scheduled.", mode.value, len(work), len(selected))
    return work
