"""
JSON translation stores and the run's side artifacts.

A store belongs to one origin and keeps two kinds of namespace per language:

- the flat namespace: ``<lang_path>/<lang>.json``, a single flat object;
- dotted namespaces: ``<lang_path>/<lang>/<name>.json``, a nested object whose
  leaves are addressed by the dotted path below ``name``.

In memory every namespace is a ``Namespace`` record holding a flat
key -> string map; nesting only exists on disk and is handled by the pure
``flatten``/``unflatten`` pair.
"""
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from i18n_sync.locale_normalizer import canonicalize

logger = logging.getLogger(__name__)

FLAT_NAMESPACE = "__flat__"
LABEL_SEPARATOR = "::"


class NamespaceKind(str, Enum):
    FLAT = "flat"
    DOTTED = "dotted"


@dataclass(frozen=True, order=True)
class NamespaceId:
    """Identity of a namespace: the owning origin plus the namespace name."""
    origin: str
    name: str

    @property
    def kind(self) -> NamespaceKind:
        return NamespaceKind.FLAT if self.name == FLAT_NAMESPACE else NamespaceKind.DOTTED

    @property
    def label(self) -> str:
        return f"{self.origin}{LABEL_SEPARATOR}{self.name}"

    def full_key(self, key: str) -> str:
        """The application-facing key for ``key`` inside this namespace."""
        if self.kind is NamespaceKind.FLAT:
            return key
        return f"{self.name}.{key}"

    @classmethod
    def flat(cls, origin: str) -> "NamespaceId":
        return cls(origin, FLAT_NAMESPACE)

    @classmethod
    def parse_label(cls, label: str) -> "NamespaceId":
        origin, sep, name = label.partition(LABEL_SEPARATOR)
        if not sep or not origin or not name:
            raise ValueError(f"Not a namespace label: '{label}'")
        return cls(origin, name)

    def __str__(self):
        return self.label


@dataclass
class Namespace:
    kind: NamespaceKind
    entries: Dict[str, str] = field(default_factory=dict)


def _coerce_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def flatten(nested: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """
    Flatten a nested mapping into dotted keys.

    ``flatten({"a": {"b": "x"}}) == {"a.b": "x"}``. ``None`` leaves are dropped,
    other scalars are converted to strings.
    """
    flat: Dict[str, str] = {}
    for key, value in nested.items():
        full = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten(value, full + "."))
        elif value is None:
            continue
        else:
            flat[full] = _coerce_value(value)
    return flat


def unflatten(flat: Dict[str, str]) -> Dict[str, Any]:
    """
    Inverse of ``flatten``. Keys are inserted in sorted order.

    When a path runs into an existing string (``a`` and ``a.b`` both set), the
    rest of the path is stored as one literal key at that level, so
    ``flatten(unflatten(m)) == m`` holds for any flat map.
    """
    root: Dict[str, Any] = {}
    for key in sorted(flat):
        value = flat[key]
        parts = key.split('.')
        node = root
        placed = False
        for index, part in enumerate(parts[:-1]):
            child = node.get(part)
            if child is None:
                child = {}
                node[part] = child
            elif not isinstance(child, dict):
                node['.'.join(parts[index:])] = value
                placed = True
                break
            node = child
        if placed:
            continue
        if isinstance(node.get(parts[-1]), dict):
            root[key] = value
        else:
            node[parts[-1]] = value
    return root


def atomic_write_json(path: str, data: Any) -> None:
    """Write ``data`` as JSON to ``path`` via a temp file in the same directory and a rename."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as handle:
            json.dump(data, handle, ensure_ascii=False, indent=4)
            handle.write("\n")
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _read_json_object(path: str) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in '{path}', got {type(data).__name__}")
    return data


class TranslationStore:
    """Reads and writes the JSON translation files of one origin."""

    def __init__(self, origin: str, lang_path: str, dry_run: bool = False):
        self.origin = origin
        self.lang_path = lang_path
        self.dry_run = dry_run
        # canonical tag -> spelling used on disk, so "pt-br/" stays "pt-br/"
        self._language_dirs: Dict[str, str] = {}
        self._discover_languages()

    def _discover_languages(self) -> None:
        if not os.path.isdir(self.lang_path):
            return
        for entry in sorted(os.listdir(self.lang_path)):
            if entry.startswith('.'):
                continue
            full = os.path.join(self.lang_path, entry)
            if os.path.isdir(full):
                name = entry
            elif entry.endswith('.json'):
                name = entry[:-len('.json')]
            else:
                continue
            self._language_dirs.setdefault(canonicalize(name), name)

    def available_languages(self) -> List[str]:
        return sorted(self._language_dirs)

    def _disk_name(self, lang: str) -> str:
        return self._language_dirs.get(canonicalize(lang), canonicalize(lang))

    def path_for(self, lang: str, namespace: NamespaceId) -> str:
        disk_name = self._disk_name(lang)
        if namespace.kind is NamespaceKind.FLAT:
            return os.path.join(self.lang_path, f"{disk_name}.json")
        return os.path.join(self.lang_path, disk_name, f"{namespace.name}.json")

    def list_namespaces(self, lang: str) -> List[NamespaceId]:
        namespaces: List[NamespaceId] = []
        flat_path = self.path_for(lang, NamespaceId.flat(self.origin))
        if os.path.isfile(flat_path):
            namespaces.append(NamespaceId.flat(self.origin))
        lang_dir = os.path.join(self.lang_path, self._disk_name(lang))
        if os.path.isdir(lang_dir):
            for entry in sorted(os.listdir(lang_dir)):
                full = os.path.join(lang_dir, entry)
                if entry.startswith('.') or not entry.endswith('.json') or not os.path.isfile(full):
                    if os.path.isdir(full):
                        logger.debug("Ignoring nested directory '%s' in language store.", full)
                    continue
                namespaces.append(NamespaceId(self.origin, entry[:-len('.json')]))
        return namespaces

    def read_namespace(self, lang: str, namespace: NamespaceId) -> Namespace:
        path = self.path_for(lang, namespace)
        if not os.path.isfile(path):
            return Namespace(namespace.kind, {})
        try:
            data = _read_json_object(path)
        except (OSError, ValueError) as e:
            logger.warning("Could not read translation file '%s', treating it as empty: %s", path, e)
            return Namespace(namespace.kind, {})
        # A flat file may still contain nested objects; flatten handles both.
        return Namespace(namespace.kind, flatten(data))

    def read_map(self, lang: str, namespace: NamespaceId) -> Dict[str, str]:
        return self.read_namespace(lang, namespace).entries

    def write_map(self, lang: str, namespace: NamespaceId, entries: Dict[str, str]) -> Optional[str]:
        """
        Persist ``entries`` for (lang, namespace).

        An existing file that does not parse as a JSON object is never
        overwritten: its content could not be merged, so the write is skipped
        with a warning. Returns the written path, or None when nothing was
        written (dry-run mode or a skipped file).
        """
        path = self.path_for(lang, namespace)
        if os.path.isfile(path):
            try:
                _read_json_object(path)
            except (OSError, ValueError) as e:
                logger.warning(
                    "Not overwriting translation file '%s' (%d key(s) skipped); it could not be read: %s. "
                    "Fix or remove the file and run again.", path, len(entries), e
                )
                return None
        if namespace.kind is NamespaceKind.FLAT:
            payload: Dict[str, Any] = {key: entries[key] for key in sorted(entries)}
        else:
            payload = unflatten(entries)
        if self.dry_run:
            logger.info("[dry-run] Would write %d key(s) to '%s'", len(entries), path)
            return None
        atomic_write_json(path, payload)
        self._language_dirs.setdefault(canonicalize(lang), self._disk_name(lang))
        logger.debug("Wrote %d key(s) to '%s'", len(entries), path)
        return path


def load_default_pack(path: Optional[str]) -> Dict[str, str]:
    """
    Load the framework's default reference-language pack.

    ``path`` is a directory of ``<name>.json`` files; keys come back as ``name.key``.
    """
    if not path:
        return {}
    if not os.path.isdir(path):
        logger.warning("Default pack directory '%s' not found; continuing without it.", path)
        return {}
    keys: Dict[str, str] = {}
    for entry in sorted(os.listdir(path)):
        if not entry.endswith('.json'):
            continue
        name = entry[:-len('.json')]
        try:
            data = _read_json_object(os.path.join(path, entry))
        except (OSError, ValueError) as e:
            logger.warning("Skipping default pack file '%s': %s", entry, e)
            continue
        for key, value in flatten(data).items():
            keys.setdefault(f"{name}.{key}", value)
    logger.info("Loaded %d key(s) from default pack '%s'.", len(keys), path)
    return keys


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_extraction_log(path: str, keys_with_sources: Dict[str, List[str]], dry_run: bool = False) -> None:
    """Overwrite the extraction log with every discovered key and the files it was found in."""
    payload = {
        "scan_timestamp": _timestamp(),
        "total_unique_keys_found_in_code": len(keys_with_sources),
        "keys": {key: sorted(keys_with_sources[key]) for key in sorted(keys_with_sources)},
    }
    if dry_run:
        logger.info("[dry-run] Would write extraction log with %d key(s) to '%s'", len(keys_with_sources), path)
        return
    atomic_write_json(path, payload)
    logger.info("Extraction log written to '%s'.", path)


def write_failed_keys_log(
        path: str,
        failed_by_namespace: Dict[str, List[str]],
        not_attempted_by_namespace: Optional[Dict[str, List[str]]] = None,
        dry_run: bool = False
) -> None:
    """
    Overwrite the failed-keys log.

    Keys are grouped by namespace label; a later run can feed this file back
    to retry just these keys.
    """
    not_attempted_by_namespace = not_attempted_by_namespace or {}
    payload = {
        "timestamp": _timestamp(),
        "failed_keys_by_namespace": {ns: sorted(keys) for ns, keys in sorted(failed_by_namespace.items())},
        "not_attempted_by_namespace": {ns: sorted(keys) for ns, keys in sorted(not_attempted_by_namespace.items())},
        "total_failed_count": sum(len(keys) for keys in failed_by_namespace.values()),
        "total_not_attempted_count": sum(len(keys) for keys in not_attempted_by_namespace.values()),
    }
    if dry_run:
        logger.info(
            "[dry-run] Would write failed keys log (%d failed) to '%s'", payload["total_failed_count"], path
        )
        return
    atomic_write_json(path, payload)
    logger.info("Failed keys log written to '%s'.", path)


def load_failed_keys_log(path: str, include_not_attempted: bool = True) -> Dict[NamespaceId, List[str]]:
    """Read back a failed-keys log as namespace -> in-namespace keys."""
    data = _read_json_object(path)
    sections = [data.get("failed_keys_by_namespace", {})]
    if include_not_attempted:
        sections.append(data.get("not_attempted_by_namespace", {}))
    result: Dict[NamespaceId, List[str]] = {}
    for section in sections:
        for label, keys in section.items():
            bucket = result.setdefault(NamespaceId.parse_label(label), [])
            bucket.extend(k for k in keys if k not in bucket)
    return result
