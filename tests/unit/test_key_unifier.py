import os
import tempfile
import unittest

from i18n_sync.key_unifier import (
    SourceTier,
    group_keys_by_namespace,
    load_store_files,
    namespace_for_key,
    regroup_by_namespace,
    split_namespace,
    unify,
)
from i18n_sync.store import NamespaceId, TranslationStore
from tests.helpers import write_json


class TestNamespaceAssignment(unittest.TestCase):
    def test_safe_prefix_gives_dotted_namespace(self):
        for key, expected in [
            ("auth.failed", ("auth", "failed")),
            ("user_profile.display_name", ("user_profile", "display_name")),
            ("my-module.title.sub", ("my-module", "title.sub")),
        ]:
            self.assertEqual(split_namespace(key), expected)
            ns, rest = namespace_for_key(key, "main")
            self.assertEqual(ns, NamespaceId("main", expected[0]))
            self.assertEqual(ns.full_key(rest), key)

    def test_other_keys_go_to_origin_flat_namespace(self):
        for key in ["Welcome back!", "Hello, world. Bye", "no_dot_at_all", "trailing.", ".leading"]:
            ns, rest = namespace_for_key(key, "Blog")
            self.assertEqual(ns, NamespaceId.flat("Blog"), key)
            self.assertEqual(rest, key)


class TestUnify(unittest.TestCase):
    def test_source_text_priority(self):
        existing = {
            "en": {NamespaceId("main", "auth"): {"failed": "Login failed", "empty": ""}},
            "de": {
                NamespaceId("main", "auth"): {"throttle": "Zu viele Versuche", "empty": "Leer"},
            },
            "fr": {NamespaceId("main", "auth"): {"throttle": "Trop de tentatives"}},
        }
        default_keys = {"auth.failed": "Pack failed", "auth.password": "The password is incorrect."}
        code_keys = {"auth.failed": "main", "user_profile.display_name": "main", "Save changes": "main"}

        unified = unify(code_keys, existing, default_keys, "en", ["de", "fr"])

        self.assertEqual(unified.source_text["auth.failed"], "Login failed")
        self.assertEqual(unified.source_tiers["auth.failed"], SourceTier.REFERENCE)
        self.assertEqual(unified.source_text["auth.password"], "The password is incorrect.")
        self.assertEqual(unified.source_tiers["auth.password"], SourceTier.DEFAULT_PACK)
        # first target language in configured order wins
        self.assertEqual(unified.source_text["auth.throttle"], "Zu viele Versuche")
        self.assertEqual(unified.source_tiers["auth.throttle"], SourceTier.OTHER_LANGUAGE)
        # empty reference text does not count as existing text
        self.assertEqual(unified.source_text["auth.empty"], "Leer")
        self.assertEqual(unified.source_text["user_profile.display_name"], "Display Name")
        self.assertTrue(unified.is_derived("user_profile.display_name"))
        self.assertEqual(unified.source_text["Save changes"], "Save changes")

    def test_key_ending_in_a_dot_keeps_its_text(self):
        unified = unify({"Saved.": "main"}, {}, {}, "en", ["de"])
        self.assertEqual(unified.source_text["Saved."], "Saved.")
        self.assertTrue(unified.is_derived("Saved."))

    def test_union_is_deduplicated(self):
        existing = {"de": {NamespaceId("main", "auth"): {"failed": "x"}}}
        unified = unify({"auth.failed": "main", "b.key": "main"}, existing, {"auth.failed": "y"}, "en", ["de"])
        self.assertEqual(unified.all_keys, ["auth.failed", "b.key"])

    def test_store_origin_wins_over_code_origin(self):
        existing = {"de": {NamespaceId("Blog", "posts"): {"title": "Titel"}}}
        unified = unify({"posts.title": "main", "posts.body": "Blog"}, existing, {}, "en", ["de"])
        self.assertEqual(unified.origins["posts.title"], "Blog")
        self.assertEqual(unified.origins["posts.body"], "Blog")

    def test_default_pack_keys_belong_to_main(self):
        unified = unify({"pagination.next": "Shop"}, {}, {"pagination.next": "Next"}, "en", ["de"])
        self.assertEqual(unified.origins["pagination.next"], "main")

    def test_group_by_namespace(self):
        unified = unify(
            {"auth.failed": "main", "Welcome!": "main", "auth.throttle": "main", "posts.title": "Blog"},
            {}, {}, "en", ["de"]
        )
        self.assertEqual(
            group_keys_by_namespace(unified),
            {
                NamespaceId("Blog", "posts"): ["title"],
                NamespaceId("main", "__flat__"): ["Welcome!"],
                NamespaceId("main", "auth"): ["failed", "throttle"],
            }
        )


class TestLoadStoreFiles(unittest.TestCase):
    def test_flat_file_keys_are_regrouped_by_namespace(self):
        with tempfile.TemporaryDirectory() as tmp:
            lang_path = os.path.join(tmp, "lang")
            write_json(os.path.join(lang_path, "de.json"), {"Hello": "Hallo", "auth.remember": "Merken"})
            write_json(os.path.join(lang_path, "de", "auth.json"), {"failed": "Fehler"})
            write_json(os.path.join(lang_path, "EN", "auth.json"), {"failed": "Failed"})
            files = load_store_files([TranslationStore("main", lang_path)], ["en", "de"])
        existing = regroup_by_namespace(files)

        self.assertEqual(existing["de"][NamespaceId("main", "auth")], {"failed": "Fehler", "remember": "Merken"})
        self.assertEqual(existing["de"][NamespaceId.flat("main")], {"Hello": "Hallo"})
        self.assertEqual(existing["en"][NamespaceId("main", "auth")], {"failed": "Failed"})
        # the per-file view still holds the flat file exactly as it is on disk
        self.assertEqual(files["de"][NamespaceId.flat("main")], {"Hello": "Hallo", "auth.remember": "Merken"})
        self.assertEqual(files["de"][NamespaceId("main", "auth")], {"failed": "Fehler"})

    def test_flat_file_value_wins_over_namespace_file(self):
        files = {"de": {
            NamespaceId.flat("main"): {"auth.failed": "Aus JSON"},
            NamespaceId("main", "auth"): {"failed": "Aus Gruppe"},
        }}
        self.assertEqual(regroup_by_namespace(files)["de"][NamespaceId("main", "auth")], {"failed": "Aus JSON"})


if __name__ == '__main__':
    unittest.main()
