import logging
import os

import pytest

from i18n_sync.app_config import AppConfig
from i18n_sync.orchestrator import RetryPolicy
from i18n_sync.pattern_extractor import DEFAULT_PATTERNS, MAIN_ORIGIN, ScanTarget
from i18n_sync.sync_policy import SyncMode


@pytest.fixture(autouse=True)
def quiet_logging():
    logging.disable(logging.CRITICAL)
    yield
    logging.disable(logging.NOTSET)


@pytest.fixture
def app_tree(tmp_path):
    """A small application tree with source code and an empty lang directory."""
    project = tmp_path / "app"
    (project / "lang").mkdir(parents=True)
    return project


@pytest.fixture
def make_config(tmp_path):
    def _make(project_path, **overrides):
        project_path = str(project_path)
        values = dict(
            project_root=str(tmp_path),
            project_path=project_path,
            targets=[ScanTarget(MAIN_ORIGIN, project_path, os.path.join(project_path, "lang"))],
            reference_language="en",
            target_languages=["de", "fr"],
            language_names={"de": "German", "fr": "French"},
            extensions=["php", "blade.php", "vue", "js"],
            exclude=["vendor", "lang"],
            patterns=list(DEFAULT_PATTERNS),
            default_pack_path=None,
            consolidate_modules=False,
            sync_mode=SyncMode.APPEND_MISSING,
            driver="concurrent",
            concurrency=4,
            chunk_size=25,
            max_retries=3,
            retry_delay=0.0,
            rate_limit=1000,
            rate_period=1.0,
            project_context="",
            namespaces=[],
            retry_failed_from=None,
            model_name="gpt-4o-mini",
            max_model_tokens=16000,
            dry_run=False,
            offline=False,
            extraction_log_path=str(tmp_path / "logs" / "translation_extraction_log.json"),
            failed_keys_log_path=str(tmp_path / "logs" / "failed_translation_keys.json"),
            openai_client=None,
            retry_policy=RetryPolicy(max_retries=3, base_delay=0.0, jitter_min=0.0, jitter_max=0.0),
        )
        values.update(overrides)
        return AppConfig(**values)

    return _make
