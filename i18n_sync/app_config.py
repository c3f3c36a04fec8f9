"""Application configuration: config.yaml, .env files and environment overrides."""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from i18n_sync.errors import ConfigurationError
from i18n_sync.locale_normalizer import canonicalize
from i18n_sync.logging_config import setup_logger
from i18n_sync.orchestrator import DEFAULT_CHUNK_SIZE, OrchestratorSettings, RetryPolicy
from i18n_sync.pattern_extractor import (
    DEFAULT_EXCLUDES,
    DEFAULT_EXTENSIONS,
    DEFAULT_PATTERNS,
    MAIN_ORIGIN,
    ExtractionPattern,
    ScanTarget,
    compile_custom_patterns,
)
from i18n_sync.sync_policy import SyncMode

DRIVERS = ("concurrent", "serial")


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    project_path: str
    targets: List[ScanTarget]

    # Languages
    reference_language: str
    target_languages: List[str]
    language_names: Dict[str, str]

    # Extraction
    extensions: List[str]
    exclude: List[str]
    patterns: List[ExtractionPattern]
    default_pack_path: Optional[str]
    consolidate_modules: bool

    # Sync and dispatch
    sync_mode: SyncMode
    driver: str
    concurrency: int
    chunk_size: int
    max_retries: int
    retry_delay: float
    rate_limit: int
    rate_period: float
    project_context: str
    namespaces: List[str]
    retry_failed_from: Optional[str]

    # Model configuration
    model_name: str
    max_model_tokens: int

    # Run behaviour
    dry_run: bool
    offline: bool

    # Side artifacts
    extraction_log_path: str
    failed_keys_log_path: str

    # OpenAI client, None when running offline
    openai_client: Optional[AsyncOpenAI] = None

    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def main_target(self) -> ScanTarget:
        for target in self.targets:
            if target.origin == MAIN_ORIGIN:
                return target
        raise ConfigurationError("No main scan target configured.")

    def orchestrator_settings(self) -> OrchestratorSettings:
        return OrchestratorSettings(
            mode=self.sync_mode,
            driver=self.driver,
            concurrency=self.concurrency,
            retry_policy=self.retry_policy,
            rate_limit=self.rate_limit,
            rate_period=self.rate_period,
        )


def _compute_project_root() -> str:
    """The directory the tool runs from; config.yaml and .env are looked up here."""
    return os.path.abspath(os.getcwd())


def _load_dotenv_files(project_root: str) -> None:
    """Load .env files from project root or docker directory."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        load_dotenv(dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        load_dotenv(dotenv_path_docker_dir)


def _load_yaml_config(project_root: str, config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the YAML configuration file.

    A missing file means defaults; a file that exists but cannot be used is a ConfigurationError.
    """
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = config_file or os.environ.get('TRANSLATOR_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    if not os.path.exists(config_file):
        print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
              file=sys.stderr)
        print(f"Tip: Create a config.yaml file in '{project_root}' or set TRANSLATOR_CONFIG_FILE environment variable.",
              file=sys.stderr)
        return {}

    if not os.access(config_file, os.R_OK):
        raise ConfigurationError(f"Configuration file '{config_file}' exists but is not readable. Check file permissions.")

    try:
        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file '{config_file}': {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read configuration file '{config_file}': {e}") from e

    if loaded_config is None:
        print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
              file=sys.stderr)
        return {}
    if not isinstance(loaded_config, dict):
        raise ConfigurationError(f"Configuration file '{config_file}' must contain a YAML dictionary.")

    print(f"Successfully loaded configuration from: {config_file}", file=sys.stderr)
    return loaded_config


def _setup_logger_from_config(config: Dict[str, Any]) -> logging.Logger:
    """Set up logger based on configuration."""
    log_config = config.get('logging', {}) or {}
    log_level_str = str(log_config.get('log_level', 'INFO')).upper()
    log_file_path = log_config.get('log_file_path', 'logs/i18n_sync.log')
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def _log_dotenv_status(logger: logging.Logger, project_root: str) -> None:
    """Log the status of .env file loading."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        logger.info("Loaded environment variables from: %s", dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        logger.info("Loaded environment variables from: %s", dotenv_path_docker_dir)
    else:
        logger.info(
            "No .env file found in project root ('%s') or in docker/ ('%s'). Relying on system environment variables if any.",
            dotenv_path_project_root,
            dotenv_path_docker_dir
        )


def _build_language_mappings(locales_list: List[Dict[str, str]]) -> Tuple[List[str], Dict[str, str]]:
    """Build the ordered target language list and code -> name map from ``supported_locales``."""
    codes: List[str] = []
    names: Dict[str, str] = {}

    for locale in locales_list:
        code = locale.get('code')
        name = locale.get('name')
        if not code:
            continue
        code = canonicalize(code)
        if code not in codes:
            codes.append(code)
        if name:
            names[code] = name

    return codes, names


def _resolve(base: str, path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    path = os.path.expanduser(str(path))
    return path if os.path.isabs(path) else os.path.abspath(os.path.join(base, path))


def _discover_targets(project_path: str, config: Dict[str, Any]) -> List[ScanTarget]:
    """The main application target plus one target per module directory under ``modules_path``."""
    source_path = _resolve(project_path, config.get('source_path', '.'))
    lang_path = _resolve(project_path, config.get('lang_path', 'lang'))
    targets = [ScanTarget(MAIN_ORIGIN, source_path, lang_path)]

    modules_path = _resolve(project_path, config.get('modules_path'))
    if modules_path:
        if not os.path.isdir(modules_path):
            raise ConfigurationError(f"Modules directory '{modules_path}' does not exist.")
        module_lang_dir = config.get('module_lang_dir', 'lang')
        for entry in sorted(os.listdir(modules_path)):
            module_dir = os.path.join(modules_path, entry)
            if entry.startswith('.') or not os.path.isdir(module_dir):
                continue
            if entry == MAIN_ORIGIN:
                raise ConfigurationError(f"Module directory name '{entry}' collides with the main origin.")
            targets.append(ScanTarget(entry, module_dir, os.path.join(module_dir, module_lang_dir)))

    return targets


def _env_override(name: str, default: Any, cast=str) -> Any:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {name}={value!r} is invalid: {e}") from e


def _positive_int(config: Dict[str, Any], key: str, default: int, env_name: Optional[str] = None) -> int:
    value = config.get(key, default)
    if env_name:
        value = _env_override(env_name, value, int)
    try:
        value = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}") from e
    if value < 1:
        raise ConfigurationError(f"'{key}' must be at least 1, got {value}")
    return value


def _create_openai_client(offline: bool, logger: logging.Logger) -> Optional[AsyncOpenAI]:
    """Create the OpenAI client unless running offline."""
    if offline:
        logger.info("Running in offline mode, OpenAI client will not be initialized")
        return None

    api_key_from_env = os.environ.get('OPENAI_API_KEY')
    if not api_key_from_env:
        raise ConfigurationError(
            "OPENAI_API_KEY environment variable not found. "
            "Set OPENAI_API_KEY or enable 'offline: true' in your config file."
        )

    if not api_key_from_env.startswith('sk-'):
        logger.warning("Warning: OPENAI_API_KEY does not start with 'sk-'. This may be invalid.")

    client = AsyncOpenAI(api_key=api_key_from_env, base_url=os.environ.get('OPENAI_BASE_URL') or None)
    logger.info("OpenAI client initialized successfully")
    return client


def load_app_config(config_file: Optional[str] = None) -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Args:
        config_file: Explicit config path. Falls back to TRANSLATOR_CONFIG_FILE, then ./config.yaml.

    Returns:
        AppConfig: The loaded application configuration.

    Raises:
        ConfigurationError: On unusable config values, paths or credentials.
    """
    project_root = _compute_project_root()

    _load_dotenv_files(project_root)

    config = _load_yaml_config(project_root, config_file)

    logger = _setup_logger_from_config(config)

    _log_dotenv_status(logger, project_root)

    project_path = _resolve(project_root, config.get('project_path', '.'))
    targets = _discover_targets(project_path, config)

    target_languages, language_names = _build_language_mappings(config.get('supported_locales', []) or [])
    for code in config.get('target_languages', []) or []:
        code = canonicalize(code)
        if code not in target_languages:
            target_languages.append(code)
    reference_language = canonicalize(config.get('reference_language', 'en'))
    target_languages = [code for code in target_languages if code != reference_language]

    try:
        sync_mode = SyncMode.parse(_env_override('TRANSLATION_SYNC_MODE', config.get('sync_mode', 'append_missing')))
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    driver = str(_env_override('TRANSLATION_DRIVER', config.get('driver', 'concurrent'))).lower()
    if driver not in DRIVERS:
        raise ConfigurationError(f"Unknown driver '{driver}'. Expected one of: {', '.join(DRIVERS)}")

    exclude = config.get('exclude')
    if exclude is None:
        exclude = list(DEFAULT_EXCLUDES)

    patterns = list(DEFAULT_PATTERNS) + compile_custom_patterns(config.get('custom_patterns'))

    max_retries = _positive_int(config, 'max_retries', 5)
    retry_delay = float(config.get('retry_delay', 3))
    retry_policy = RetryPolicy(
        max_retries=max_retries,
        base_delay=retry_delay,
        quota_backoff_factor=float(config.get('quota_backoff_factor', 2.0)),
        malformed_delay_scale=float(config.get('malformed_delay_scale', 0.5)),
    )

    project_context = config.get('project_context', '') or ''
    context_file = _resolve(project_root, config.get('project_context_file'))
    if context_file:
        try:
            with open(context_file, 'r', encoding='utf-8') as handle:
                project_context = (project_context + "\n" + handle.read()).strip()
        except OSError as e:
            raise ConfigurationError(f"Could not read project context file '{context_file}': {e}") from e

    offline = bool(config.get('offline', False))
    dry_run = bool(config.get('dry_run', False))

    openai_client = _create_openai_client(offline, logger)

    return AppConfig(
        project_root=project_root,
        project_path=project_path,
        targets=targets,
        reference_language=reference_language,
        target_languages=target_languages,
        language_names=language_names,
        extensions=list(config.get('extensions') or DEFAULT_EXTENSIONS),
        exclude=list(exclude),
        patterns=patterns,
        default_pack_path=_resolve(project_path, config.get('default_pack_path')),
        consolidate_modules=bool(config.get('consolidate_modules', False)),
        sync_mode=sync_mode,
        driver=driver,
        concurrency=_positive_int(config, 'concurrency', 15, 'TRANSLATION_CONCURRENCY'),
        chunk_size=_positive_int(config, 'chunk_size', DEFAULT_CHUNK_SIZE, 'TRANSLATION_CHUNK_SIZE'),
        max_retries=max_retries,
        retry_delay=retry_delay,
        rate_limit=_positive_int(config, 'rate_limit', 60),
        rate_period=float(config.get('rate_period', 60)),
        project_context=project_context,
        namespaces=list(config.get('namespaces') or []),
        retry_failed_from=_resolve(project_root, config.get('retry_failed_from')),
        model_name=_env_override('TRANSLATION_MODEL_NAME', config.get('model_name', 'gpt-4o-mini')),
        max_model_tokens=_positive_int(config, 'max_model_tokens', 16000),
        dry_run=dry_run,
        offline=offline,
        extraction_log_path=_resolve(project_root, config.get('extraction_log_path', 'logs/translation_extraction_log.json')),
        failed_keys_log_path=_resolve(project_root, config.get('failed_keys_log_path', 'logs/failed_translation_keys.json')),
        openai_client=openai_client,
        retry_policy=retry_policy,
    )
