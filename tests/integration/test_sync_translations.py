# tests/integration/test_sync_translations.py

import os
from unittest.mock import patch

import pytest

from i18n_sync import sync_translations
from i18n_sync.errors import ConfigurationError, ServiceTransportError
from i18n_sync.operator_io import AllSelector, NamespaceSelector
from i18n_sync.pattern_extractor import MAIN_ORIGIN, ScanTarget
from i18n_sync.sync_policy import SyncMode
from i18n_sync.sync_translations import run_sync
from tests.helpers import ScriptedTranslationService, prefixed_responder, read_json, write_json, write_text

HOME_VIEW = """
<h1>{{ __('auth.failed') }}</h1>
<p>{{ __('Welcome, :name!') }}</p>
<a href="{{ route('home.index') }}">{{ __("user_profile.display_name") }}</a>
"""


@pytest.fixture
def laravel_app(app_tree):
    write_text(str(app_tree / "resources" / "views" / "home.blade.php"), HOME_VIEW)
    write_json(str(app_tree / "lang" / "en" / "auth.json"), {"failed": "Login failed"})
    write_json(str(app_tree / "lang" / "de" / "auth.json"), {"failed": "Anmeldung fehlgeschlagen"})
    return app_tree


@pytest.mark.asyncio
async def test_append_missing_fills_gaps_without_overwriting(laravel_app, make_config):
    config = make_config(laravel_app)
    service = ScriptedTranslationService(prefixed_responder)

    summary = await run_sync(config, service=service)

    lang = laravel_app / "lang"
    assert read_json(str(lang / "de" / "auth.json")) == {"failed": "Anmeldung fehlgeschlagen"}
    assert read_json(str(lang / "fr" / "auth.json")) == {"failed": "fr: Login failed"}
    assert read_json(str(lang / "de.json")) == {"Welcome, :name!": "de: Welcome, :name!"}
    assert read_json(str(lang / "fr" / "user_profile.json")) == {"display_name": "fr: Display Name"}
    # the route() look-alike is not a translation key
    assert not any("home.index" in call[0] for call in service.calls)
    assert {call[3] for call in service.calls} == {"main::__flat__", "main::auth", "main::user_profile"}
    assert summary.failed_keys == {}

    extraction_log = read_json(config.extraction_log_path)
    assert extraction_log["keys"]["auth.failed"] == ["resources/views/home.blade.php"]
    assert read_json(config.failed_keys_log_path)["total_failed_count"] == 0


@pytest.mark.asyncio
async def test_full_sync_overwrites_and_preserves_unprocessed_keys(laravel_app, make_config):
    write_json(str(laravel_app / "lang" / "de" / "auth.json"),
               {"failed": "Anmeldung fehlgeschlagen", "throttle": "Zu viele Versuche"})
    config = make_config(laravel_app, sync_mode=SyncMode.FULL_SYNC, namespaces=["main::auth"])

    await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    de_auth = read_json(str(laravel_app / "lang" / "de" / "auth.json"))
    assert de_auth["failed"] == "de: Login failed"
    assert de_auth["throttle"] == "de: Zu viele Versuche"
    # namespaces outside the selection are left alone
    assert not os.path.exists(laravel_app / "lang" / "de.json")
    assert not os.path.exists(laravel_app / "lang" / "de" / "user_profile.json")


@pytest.mark.asyncio
async def test_refresh_existing_only_touches_known_keys(laravel_app, make_config):
    config = make_config(laravel_app, sync_mode=SyncMode.REFRESH_EXISTING)
    service = ScriptedTranslationService(prefixed_responder)

    await run_sync(config, service=service)

    assert [call[3] for call in service.calls] == ["main::auth"]
    assert read_json(str(laravel_app / "lang" / "de" / "auth.json")) == {"failed": "de: Login failed"}
    assert not os.path.exists(laravel_app / "lang" / "de.json")


@pytest.mark.asyncio
async def test_offline_run_writes_fallback_text(laravel_app, make_config):
    config = make_config(laravel_app, offline=True)

    summary = await run_sync(config)

    lang = laravel_app / "lang"
    assert read_json(str(lang / "de" / "user_profile.json")) == {"display_name": "Display name"}
    assert read_json(str(lang / "fr.json")) == {"Welcome, :name!": "Welcome, :name!"}
    assert read_json(str(lang / "fr" / "auth.json")) == {"failed": "Login failed"}
    assert summary.fallback_count > 0
    assert summary.failed_keys == {}


@pytest.mark.asyncio
async def test_dry_run_writes_no_translation_files(laravel_app, make_config):
    config = make_config(laravel_app, dry_run=True)

    summary = await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    assert summary.entries_written > 0
    assert not os.path.exists(laravel_app / "lang" / "fr")
    assert not os.path.exists(laravel_app / "lang" / "de.json")
    assert not os.path.exists(config.extraction_log_path)
    assert not os.path.exists(config.failed_keys_log_path)


@pytest.mark.asyncio
async def test_failed_batch_is_logged_and_can_be_retried(laravel_app, make_config):
    def flaky(texts, langs):
        if "auth.failed" in texts:
            raise ServiceTransportError("upstream unavailable")
        return prefixed_responder(texts, langs)

    config = make_config(laravel_app)
    summary = await run_sync(config, service=ScriptedTranslationService(flaky))

    assert summary.failed_keys == {"main::auth": ["failed"]}
    failed_log = read_json(config.failed_keys_log_path)
    assert failed_log["failed_keys_by_namespace"] == {"main::auth": ["failed"]}
    assert not os.path.exists(laravel_app / "lang" / "fr" / "auth.json")
    # batches that succeeded were still written
    assert os.path.exists(laravel_app / "lang" / "fr.json")

    retry_config = make_config(laravel_app, retry_failed_from=config.failed_keys_log_path)
    service = ScriptedTranslationService(prefixed_responder)
    await run_sync(retry_config, service=service)

    assert [call[3] for call in service.calls] == ["main::auth"]
    assert read_json(str(laravel_app / "lang" / "fr" / "auth.json")) == {"failed": "fr: Login failed"}
    assert read_json(config.failed_keys_log_path)["total_failed_count"] == 0


@pytest.mark.asyncio
async def test_module_keys_are_written_to_module_store(laravel_app, make_config):
    module_dir = laravel_app / "Modules" / "Blog"
    write_text(str(module_dir / "resources" / "views" / "post.blade.php"), "<h2>{{ __('posts.title') }}</h2>")
    targets = [
        ScanTarget(MAIN_ORIGIN, str(laravel_app), str(laravel_app / "lang")),
        ScanTarget("Blog", str(module_dir), str(module_dir / "lang")),
    ]
    config = make_config(laravel_app, targets=targets)

    await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    assert read_json(str(module_dir / "lang" / "de" / "posts.json")) == {"title": "de: Title"}
    assert not os.path.exists(laravel_app / "lang" / "de" / "posts.json")


@pytest.mark.asyncio
async def test_consolidated_modules_share_the_main_store(laravel_app, make_config):
    module_dir = laravel_app / "Modules" / "Blog"
    write_text(str(module_dir / "resources" / "views" / "post.blade.php"), "<h2>{{ __('posts.title') }}</h2>")
    targets = [
        ScanTarget(MAIN_ORIGIN, str(laravel_app), str(laravel_app / "lang")),
        ScanTarget("Blog", str(module_dir), str(module_dir / "lang")),
    ]
    config = make_config(laravel_app, targets=targets, consolidate_modules=True)

    await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    assert read_json(str(laravel_app / "lang" / "de" / "posts.json")) == {"title": "de: Title"}


@pytest.mark.asyncio
async def test_flat_file_keeps_dotted_keys_when_new_keys_are_appended(app_tree, make_config):
    write_text(str(app_tree / "resources" / "views" / "welcome.blade.php"), "{{ __('Welcome') }} {{ __('New key') }}")
    write_json(str(app_tree / "lang" / "de.json"), {"auth.failed": "Anmeldung fehlgeschlagen", "Welcome": "Willkommen"})
    config = make_config(app_tree, target_languages=["de"])

    await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    assert read_json(str(app_tree / "lang" / "de.json")) == {
        "New key": "de: New key",
        "Welcome": "Willkommen",
        "auth.failed": "Anmeldung fehlgeschlagen",
    }
    assert not os.path.exists(app_tree / "lang" / "de" / "auth.json")


@pytest.mark.asyncio
async def test_full_sync_updates_dotted_key_in_the_flat_file(app_tree, make_config):
    write_text(str(app_tree / "resources" / "views" / "login.blade.php"), "{{ __('auth.failed') }}")
    write_json(str(app_tree / "lang" / "de.json"), {"auth.failed": "Alt", "Welcome": "Willkommen"})
    config = make_config(app_tree, target_languages=["de"], sync_mode=SyncMode.FULL_SYNC, namespaces=["auth"])

    await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    assert read_json(str(app_tree / "lang" / "de.json")) == {"Welcome": "Willkommen", "auth.failed": "de: Alt"}
    assert not os.path.exists(app_tree / "lang" / "de" / "auth.json")


@pytest.mark.asyncio
async def test_key_ending_in_a_dot_is_not_blank(app_tree, make_config):
    write_text(str(app_tree / "resources" / "views" / "form.blade.php"), "{{ __('Saved.') }}")
    service = ScriptedTranslationService(prefixed_responder)

    await run_sync(make_config(app_tree, target_languages=["de"]), service=service)

    assert service.calls[0][0] == {"Saved.": "Saved."}
    assert read_json(str(app_tree / "lang" / "de.json")) == {"Saved.": "de: Saved."}


def test_selector_follows_configuration(app_tree, make_config):
    assert isinstance(sync_translations.build_selector(make_config(app_tree)), AllSelector)
    assert isinstance(sync_translations.build_selector(make_config(app_tree, namespaces=[" "])), AllSelector)
    assert isinstance(sync_translations.build_selector(make_config(app_tree, namespaces=["auth"])), NamespaceSelector)


@pytest.mark.asyncio
async def test_no_keys_is_a_successful_noop(app_tree, make_config):
    service = ScriptedTranslationService(prefixed_responder)

    summary = await run_sync(make_config(app_tree), service=service)

    assert summary.total_batches == 0
    assert service.calls == []


@pytest.mark.asyncio
async def test_up_to_date_project_translates_nothing(laravel_app, make_config):
    config = make_config(laravel_app)
    await run_sync(config, service=ScriptedTranslationService(prefixed_responder))

    service = ScriptedTranslationService(prefixed_responder)
    summary = await run_sync(config, service=service)

    assert service.calls == []
    assert summary.total_batches == 0
    assert read_json(config.failed_keys_log_path)["total_failed_count"] == 0


@pytest.mark.asyncio
async def test_target_languages_discovered_from_store(laravel_app, make_config):
    config = make_config(laravel_app, target_languages=[])
    service = ScriptedTranslationService(prefixed_responder)

    await run_sync(config, service=service)

    assert {lang for call in service.calls for lang in call[1]} == {"de"}


@pytest.mark.asyncio
async def test_missing_source_directory_is_a_configuration_error(tmp_path, make_config):
    with pytest.raises(ConfigurationError):
        await run_sync(make_config(tmp_path / "missing"))


def test_main_returns_error_code_on_configuration_error():
    with patch.object(sync_translations, "load_app_config", side_effect=ConfigurationError("bad")):
        assert sync_translations.main() == 1


def test_main_runs_sync(laravel_app, make_config):
    config = make_config(laravel_app, offline=True)
    with patch.object(sync_translations, "load_app_config", return_value=config):
        assert sync_translations.main() == 0
    assert os.path.exists(laravel_app / "lang" / "de.json")
