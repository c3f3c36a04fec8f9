"""Shared helpers for the test suite."""
import json
import os

from i18n_sync.llm_client import TranslationService


def write_json(path, data):
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def read_json(path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_text(path, content):
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(content)


class ScriptedTranslationService(TranslationService):
    """
    Fake service for tests.

    ``responder(source_texts, target_languages)`` builds the answer; ``failures``
    is a list of exceptions raised, in order, before the responder is used.
    """

    def __init__(self, responder=None, failures=None):
        self.responder = responder or (lambda texts, langs: {})
        self.failures = list(failures or [])
        self.calls = []

    async def translate(self, source_texts, target_languages, context="", namespace_label=""):
        self.calls.append((dict(source_texts), tuple(target_languages), context, namespace_label))
        if self.failures:
            raise self.failures.pop(0)
        return self.responder(source_texts, target_languages)


def prefixed_responder(texts, langs):
    """Answers '<lang>: <source>' for every key and language."""
    return {key: {lang: f"{lang}: {text}" for lang in langs} for key, text in texts.items()}
