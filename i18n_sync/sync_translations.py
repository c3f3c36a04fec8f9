import asyncio
import logging
import os
import sys
from typing import Dict, List, Optional

from i18n_sync.app_config import AppConfig, load_app_config
from i18n_sync.errors import ConfigurationError
from i18n_sync.key_unifier import group_keys_by_namespace, load_store_files, regroup_by_namespace, unify
from i18n_sync.llm_client import OfflineTranslationService, OpenAITranslationService, TranslationService
from i18n_sync.locale_normalizer import canonicalize
from i18n_sync.operator_io import (
    AllSelector,
    FailedKeysSelector,
    NamespaceSelector,
    StopSignal,
    SubsetSelector,
    install_interrupt_handler,
)
from i18n_sync.orchestrator import RunSummary, build_batches, run_translation_process
from i18n_sync.pattern_extractor import MAIN_ORIGIN, scan_targets
from i18n_sync.store import (
    TranslationStore,
    load_default_pack,
    load_failed_keys_log,
    write_extraction_log,
    write_failed_keys_log,
)
from i18n_sync.sync_policy import plan, work_items_from_selection
from i18n_sync.translation_validator import build_final_maps

if sys.version_info < (3, 9):
    print("Error: This script requires Python 3.9 or higher.", file=sys.stderr)
    sys.exit(1)

logger = logging.getLogger(__name__)


def validate_targets(config: AppConfig) -> None:
    """Every configured source tree must be a readable directory."""
    for target in config.targets:
        if not os.path.isdir(target.source_path) or not os.access(target.source_path, os.R_OK):
            raise ConfigurationError(
                f"Source directory '{target.source_path}' for origin '{target.origin}' does not exist or is not readable."
            )


def build_stores(config: AppConfig) -> Dict[str, TranslationStore]:
    return {
        target.origin: TranslationStore(target.origin, target.lang_path, dry_run=config.dry_run)
        for target in config.targets
    }


def resolve_target_languages(config: AppConfig, stores: Dict[str, TranslationStore]) -> List[str]:
    """Configured target languages, or every language found in the main store."""
    if config.target_languages:
        return list(config.target_languages)
    reference = canonicalize(config.reference_language)
    main_store = stores.get(MAIN_ORIGIN)
    discovered = [lang for lang in (main_store.available_languages() if main_store else []) if lang != reference]
    if not discovered:
        raise ConfigurationError(
            "No target languages configured and none found in the main language directory."
        )
    logger.info("No target languages configured; using languages found on disk: %s", ", ".join(discovered))
    return discovered


def build_selector(config: AppConfig) -> SubsetSelector:
    if config.retry_failed_from:
        if not os.path.isfile(config.retry_failed_from):
            raise ConfigurationError(f"Failed keys log '{config.retry_failed_from}' does not exist.")
        return FailedKeysSelector(load_failed_keys_log(config.retry_failed_from))
    if not any(ns and ns.strip() for ns in config.namespaces):
        return AllSelector()
    return NamespaceSelector(config.namespaces)


def build_service(config: AppConfig) -> TranslationService:
    if config.offline:
        logger.info("Offline mode: every key will use fallback text.")
        return OfflineTranslationService()
    if config.openai_client is None:
        raise ConfigurationError("OpenAI client is not configured.")
    return OpenAITranslationService(
        client=config.openai_client,
        model_name=config.model_name,
        max_model_tokens=config.max_model_tokens,
        language_names=config.language_names,
        reference_language=config.reference_language,
    )


def write_final_maps(config: AppConfig, stores: Dict[str, TranslationStore], final_maps) -> int:
    """Write every touched (language, namespace) file. Returns the number of files handled."""
    handled = 0
    for lang in sorted(final_maps):
        for namespace in sorted(final_maps[lang]):
            store = stores.get(namespace.origin) or stores[MAIN_ORIGIN]
            store.write_map(lang, namespace, final_maps[lang][namespace])
            handled += 1
    return handled


async def run_sync(
        config: AppConfig,
        service: Optional[TranslationService] = None,
        stop_signal: Optional[StopSignal] = None,
        selector: Optional[SubsetSelector] = None
) -> RunSummary:
    """
    Run one extract-unify-plan-translate-merge cycle.

    Returns the run summary. An empty key set or an empty work set is a
    successful run with nothing written.
    """
    validate_targets(config)

    stores = build_stores(config)
    target_languages = resolve_target_languages(config, stores)
    reference = canonicalize(config.reference_language)

    # Step 1: Load existing translations and the default pack.
    store_files = load_store_files(list(stores.values()), [reference] + target_languages)
    existing = regroup_by_namespace(store_files)
    default_keys = load_default_pack(config.default_pack_path)

    # Step 2: Scan source code.
    extraction = scan_targets(
        config.targets,
        config.extensions,
        config.exclude,
        project_root=config.project_path,
        consolidate_modules=config.consolidate_modules,
        patterns=config.patterns,
    )
    write_extraction_log(config.extraction_log_path, extraction.keys_with_sources, dry_run=config.dry_run)

    # Step 3: Unify keys and resolve source text.
    unified = unify(extraction.key_origins, existing, default_keys, reference, target_languages)
    if not unified.all_keys:
        logger.info("No translation keys found in code, stores or default pack. Nothing to do.")
        return RunSummary()

    # Step 4: Select and plan.
    selector = selector or build_selector(config)
    selection = selector.select_subset(group_keys_by_namespace(unified))
    selected = work_items_from_selection(selection)
    work_items = plan(selected, existing, target_languages, config.sync_mode)
    if not work_items:
        logger.info("All selected keys are up to date for mode '%s'. Nothing to translate.", config.sync_mode.value)
        write_failed_keys_log(config.failed_keys_log_path, {}, dry_run=config.dry_run)
        return RunSummary()

    # Step 5: Translate.
    batches = build_batches(work_items, unified, target_languages, config.chunk_size, config.project_context)
    service = service or build_service(config)
    summary = await run_translation_process(
        batches, service, config.orchestrator_settings(), existing, stop_signal
    )

    # Step 6: Merge and write.
    final_maps = build_final_maps(store_files, summary.translations)
    files_handled = write_final_maps(config, stores, final_maps)
    if config.dry_run:
        logger.info("Dry run enabled; %d translation file(s) were not written.", files_handled)
    else:
        logger.info("Wrote %d translation file(s).", files_handled)

    write_failed_keys_log(
        config.failed_keys_log_path, summary.failed_keys, summary.not_attempted_keys, dry_run=config.dry_run
    )

    logger.info(
        "Summary: %d key(s) written, %d fallback(s), %d key(s) failed, %d batch(es) not attempted.",
        summary.entries_written, summary.fallback_count, summary.failed_key_count, summary.not_attempted_batches
    )
    if summary.failed_keys:
        logger.warning(
            "Some keys failed. Set 'retry_failed_from: %s' to retry just those keys.", config.failed_keys_log_path
        )
    return summary


def main() -> int:
    """
    Entry point: load configuration, run the sync, map the outcome to an exit code.
    """
    try:
        config = load_app_config()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    stop_signal = StopSignal()
    if config.driver == "serial":
        install_interrupt_handler(stop_signal)

    try:
        summary = asyncio.run(run_sync(config, stop_signal=stop_signal))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 1

    if summary.stopped:
        logger.warning("Run stopped by operator; remaining batches were recorded as not attempted.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
