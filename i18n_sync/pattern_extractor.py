"""
Discovery of translation keys in application source code.

A fixed, ordered list of ``ExtractionPattern`` objects is applied to the text of
every scanned file. Each pattern is an alternation whose first branch consumes
look-alike calls (``route(...)``, ``config(...)`` and friends) so their
arguments are never reported as keys.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Set

from i18n_sync.errors import ConfigurationError, ExtractionWarning

logger = logging.getLogger(__name__)

MAIN_ORIGIN = "main"

DEFAULT_EXTENSIONS = ["php", "blade.php", "vue", "js", "jsx", "ts", "tsx"]
DEFAULT_EXCLUDES = [
    "vendor", "node_modules", "storage", "public", "bootstrap", "tests", "lang",
    "config", "database", "routes", "app/Console", "resources/lang",
]
# Never scanned regardless of extension
EXCLUDED_FILENAMES = {
    "artisan", "composer.json", "composer.lock", "package.json", "package-lock.json",
    "phpunit.xml", "README.md", "vite.config.js", "auth.json",
    "failed_translation_keys.json", "translation_extraction_log.json",
}
_EXCLUDED_FILENAME_PREFIXES = ("Homestead.",)
VCS_DIRECTORIES = {".git", ".svn", ".hg", "CVS", ".bzr"}

TRANSLATION_FUNCTIONS = ["__", "trans", "trans_choice", "@lang", "@choice", "Lang::get", "Lang::choice", "Lang::has", "$t", "i18n.t"]
TRANSLATION_ATTRIBUTES = ["v-t", "x-text"]
BOUND_TRANSLATION_ATTRIBUTES = [":v-t", ":x-text", "v-bind:v-t", "v-bind:x-text"]
LOOKALIKE_FUNCTIONS = ["route", "config", "asset", "url", "mix", "old"]

_QUOTES = {"single": "'", "double": '"', "backtick": "`"}

_SKIP_BRANCH = r'(?P<skip>(?<![\w$])(?:' + '|'.join(LOOKALIKE_FUNCTIONS) + r')\s*\([^)]+\))'


def _alternation(names: Sequence[str]) -> str:
    # Longest first so "trans_choice" is tried before "trans"
    return '|'.join(re.escape(name) for name in sorted(names, key=len, reverse=True))


def _quoted_literal(quote: str) -> str:
    q = re.escape(quote)
    return q + r'(?P<key>(?:[^' + q + r'\\]|\\.)*)' + q


@dataclass(frozen=True)
class ExtractionPattern:
    """One lexical shape that yields translation keys."""
    name: str
    regex: "re.Pattern"
    unwrap_attribute: bool = False

    def find_keys(self, text: str) -> List[str]:
        """Return the normalized keys this pattern finds in ``text``, in order of appearance."""
        keys: List[str] = []
        for match in self.regex.finditer(text):
            if match.groupdict().get("skip"):
                continue
            raw = match.group("key")
            if not raw:
                continue
            key = normalize_found_key(raw, self.unwrap_attribute)
            if key:
                keys.append(key)
        return keys


def build_pattern(name: str, shape: str, quote: str, unwrap_attribute: bool = False) -> ExtractionPattern:
    regex = re.compile(_SKIP_BRANCH + '|' + shape + _quoted_literal(quote), re.DOTALL)
    return ExtractionPattern(name=name, regex=regex, unwrap_attribute=unwrap_attribute)


def _default_patterns() -> List[ExtractionPattern]:
    call_shape = r'(?<![\w$])(?:' + _alternation(TRANSLATION_FUNCTIONS) + r')\s*\(\s*'
    attr_shape = r'(?<![\w:.-])(?:' + _alternation(TRANSLATION_ATTRIBUTES) + r')='
    bound_shape = r'(?<![\w:.-])(?:' + _alternation(BOUND_TRANSLATION_ATTRIBUTES) + r')='

    patterns = []
    for quote_name, quote in _QUOTES.items():
        patterns.append(build_pattern(f"call_{quote_name}", call_shape, quote))
    for quote_name, quote in _QUOTES.items():
        patterns.append(build_pattern(f"attribute_{quote_name}", attr_shape, quote, unwrap_attribute=True))
    for quote_name, quote in _QUOTES.items():
        patterns.append(build_pattern(f"bound_attribute_{quote_name}", bound_shape, quote, unwrap_attribute=True))
    return patterns


DEFAULT_PATTERNS: List[ExtractionPattern] = _default_patterns()


def compile_custom_patterns(definitions: Optional[List[Dict[str, str]]]) -> List[ExtractionPattern]:
    """
    Build extra patterns from config entries of the form ``{name, regex}``.

    The regex must define a ``key`` named group. Look-alike calls are skipped
    the same way as for the built-in patterns.
    """
    patterns: List[ExtractionPattern] = []
    for index, definition in enumerate(definitions or []):
        name = definition.get("name") or f"custom_{index}"
        source = definition.get("regex")
        if not source:
            raise ConfigurationError(f"Custom pattern '{name}' has no regex.")
        try:
            regex = re.compile(_SKIP_BRANCH + '|' + source, re.DOTALL)
        except re.error as e:
            raise ConfigurationError(f"Custom pattern '{name}' is not a valid regex: {e}") from e
        if "key" not in regex.groupindex:
            raise ConfigurationError(f"Custom pattern '{name}' must define a (?P<key>...) group.")
        patterns.append(ExtractionPattern(name=name, regex=regex, unwrap_attribute=bool(definition.get("unwrap", False))))
    return patterns


_ATTRIBUTE_CALL_PATTERNS = [
    re.compile(r'(?<![\w$])__\s*\(\s*["\']([^"\']+)["\']\s*\)'),
    re.compile(r'(?<![\w$])trans\s*\(\s*["\']([^"\']+)["\']\s*\)'),
    re.compile(r'(?<![\w$])trans_choice\s*\(\s*["\']([^"\']+)["\']'),
    re.compile(r'@lang\s*\(\s*["\']([^"\']+)["\']\s*\)'),
    re.compile(r'(?<![\w$])\$t\s*\(\s*["\']([^"\']+)["\']'),
]
_QUOTED_VALUE = re.compile(r'^["\'`](.*)["\'`]$', re.DOTALL)
_ESCAPE_SEQUENCE = re.compile(r'\\(.)', re.DOTALL)
_ESCAPE_MAP = {"n": "\n", "t": "\t", "r": "\r"}


def extract_key_from_attribute(value: str) -> str:
    """
    Unwrap the key from an attribute value.

    ``__('messages.hello')`` and ``'messages.hello'`` both yield ``messages.hello``.
    """
    for pattern in _ATTRIBUTE_CALL_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    stripped = value.strip()
    match = _QUOTED_VALUE.match(stripped)
    if match:
        return match.group(1)
    return stripped


def _unescape_literal(raw: str) -> str:
    return _ESCAPE_SEQUENCE.sub(lambda m: _ESCAPE_MAP.get(m.group(1), m.group(1)), raw)


def normalize_found_key(raw: str, unwrap_attribute: bool = False) -> str:
    key = _unescape_literal(raw)
    if unwrap_attribute:
        key = extract_key_from_attribute(key)
    # Only path-like keys, prose such as "and/or" stays as written
    if '/' in key and not re.search(r'\s', key):
        key = key.replace('/', '.')
    return key


@dataclass
class ScanTarget:
    """A source tree owned by one origin, with the directory its translations live in."""
    origin: str
    source_path: str
    lang_path: str
    extra_excludes: List[str] = field(default_factory=list)


@dataclass
class ExtractionResult:
    keys_with_sources: Dict[str, List[str]] = field(default_factory=dict)
    key_origins: Dict[str, str] = field(default_factory=dict)
    files_scanned: int = 0
    unreadable_files: List[str] = field(default_factory=list)

    def record(self, key: str, source: str, origin: str) -> None:
        sources = self.keys_with_sources.setdefault(key, [])
        if source not in sources:
            sources.append(source)
        self.key_origins.setdefault(key, origin)


def _is_excluded_file(filename: str) -> bool:
    if filename.startswith('.'):
        return True
    if filename in EXCLUDED_FILENAMES or filename.endswith('.log'):
        return True
    return filename.startswith(_EXCLUDED_FILENAME_PREFIXES)


def _has_extension(filename: str, include_exts: Sequence[str]) -> bool:
    return any(filename.endswith('.' + ext.strip().lstrip('.')) for ext in include_exts if ext.strip())


def list_files(roots: Sequence[str], include_exts: Sequence[str], exclude_dirs: Sequence[str]) -> Iterator[str]:
    """
    Yield every file below ``roots`` with one of ``include_exts``.

    ``exclude_dirs`` entries are matched against a directory's path relative
    to its root (``app/Console``) or against its bare name (``vendor``).
    Absolute entries exclude that exact directory.
    """
    relative_excludes: Set[str] = set()
    absolute_excludes: Set[str] = set()
    for entry in exclude_dirs:
        entry = entry.strip()
        if not entry:
            continue
        if os.path.isabs(entry):
            absolute_excludes.add(os.path.normpath(entry))
        else:
            relative_excludes.add(entry.strip('/').replace('\\', '/'))

    for root in roots:
        for dirpath, dirnames, filenames in os.walk(root):
            kept = []
            for dirname in sorted(dirnames):
                full = os.path.join(dirpath, dirname)
                rel = os.path.relpath(full, root).replace(os.sep, '/')
                if dirname.startswith('.') or dirname in VCS_DIRECTORIES:
                    continue
                if rel in relative_excludes or dirname in relative_excludes:
                    continue
                if os.path.normpath(full) in absolute_excludes:
                    continue
                kept.append(dirname)
            dirnames[:] = kept

            for filename in sorted(filenames):
                if _is_excluded_file(filename) or not _has_extension(filename, include_exts):
                    continue
                yield os.path.join(dirpath, filename)


def read_text(path: str) -> str:
    """Read a source file as UTF-8. Raises ExtractionWarning when it cannot be read."""
    try:
        with open(path, 'r', encoding='utf-8', errors='strict') as handle:
            return handle.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ExtractionWarning(path, str(e)) from e


def scan_source_tree(
        root: str,
        include_exts: Sequence[str],
        exclude_dirs: Sequence[str],
        origin: str = MAIN_ORIGIN,
        patterns: Optional[Sequence[ExtractionPattern]] = None,
        project_root: Optional[str] = None,
        result: Optional[ExtractionResult] = None
) -> ExtractionResult:
    """
    Scan one source tree and record each key with the files it appears in.

    Args:
        root: Directory to scan.
        include_exts: File extensions to include, without the leading dot.
        exclude_dirs: Directory names or root-relative paths to skip.
        origin: Origin assigned to keys first seen here.
        patterns: Patterns to apply, DEFAULT_PATTERNS when omitted.
        project_root: Provenance paths are written relative to this directory (``root`` by default).
        result: An existing result to accumulate into.

    Returns:
        The (possibly shared) ExtractionResult.

    Raises:
        ConfigurationError: If ``root`` is not a readable directory.
    """
    if not os.path.isdir(root) or not os.access(root, os.R_OK | os.X_OK):
        raise ConfigurationError(f"Source directory '{root}' does not exist or is not readable.")

    patterns = DEFAULT_PATTERNS if patterns is None else patterns
    result = result if result is not None else ExtractionResult()
    base = project_root or root

    for path in list_files([root], include_exts, exclude_dirs):
        try:
            content = read_text(path)
        except ExtractionWarning as warning:
            logger.warning("Skipping unreadable file: %s", warning)
            result.unreadable_files.append(path)
            continue

        result.files_scanned += 1
        relative = os.path.relpath(path, base).replace(os.sep, '/')
        for pattern in patterns:
            for key in pattern.find_keys(content):
                result.record(key, relative, origin)

    return result


def scan_targets(
        targets: Sequence[ScanTarget],
        include_exts: Sequence[str],
        exclude_dirs: Sequence[str],
        project_root: str,
        consolidate_modules: bool = False,
        patterns: Optional[Sequence[ExtractionPattern]] = None
) -> ExtractionResult:
    """
    Scan the main application and every module target into one result.

    Module directories nested inside the main source tree are excluded from
    the main scan so their keys keep the module's origin.
    """
    result = ExtractionResult()
    module_paths = [os.path.abspath(t.source_path) for t in targets if t.origin != MAIN_ORIGIN]

    for target in targets:
        excludes = list(exclude_dirs) + list(target.extra_excludes)
        if target.origin == MAIN_ORIGIN:
            excludes.extend(module_paths)
        origin = MAIN_ORIGIN if consolidate_modules else target.origin
        logger.info("Scanning '%s' for translation keys (origin: %s)", target.source_path, origin)
        scan_source_tree(
            target.source_path,
            include_exts,
            excludes,
            origin=origin,
            patterns=patterns,
            project_root=project_root,
            result=result,
        )

    logger.info(
        "Scanned %d file(s), found %d unique key(s), %d unreadable file(s).",
        result.files_scanned, len(result.keys_with_sources), len(result.unreadable_files)
    )
    return result
