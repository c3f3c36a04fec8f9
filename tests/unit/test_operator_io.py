import signal

import pytest

from i18n_sync.operator_io import (
    AllSelector,
    FailedKeysSelector,
    NamespaceSelector,
    StopSignal,
    SubsetSelector,
    install_interrupt_handler,
)
from i18n_sync.store import NamespaceId

AUTH = NamespaceId("main", "auth")
BLOG_POSTS = NamespaceId("Blog", "posts")
BLOG_AUTH = NamespaceId("Blog", "auth")


@pytest.fixture
def candidates():
    return {
        AUTH: ["failed", "throttle"],
        BLOG_AUTH: ["login"],
        BLOG_POSTS: ["title", "body"],
    }


def test_all_selector_keeps_everything(candidates):
    assert AllSelector().select_subset(candidates) == candidates


def test_namespace_selector_by_label(candidates):
    selected = NamespaceSelector(["main::auth"]).select_subset(candidates)
    assert selected == {AUTH: ["failed", "throttle"]}


def test_namespace_selector_bare_name_matches_every_origin(candidates):
    selected = NamespaceSelector(["auth"]).select_subset(candidates)
    assert set(selected) == {AUTH, BLOG_AUTH}


def test_namespace_selector_by_origin(candidates):
    selected = NamespaceSelector(["Blog"]).select_subset(candidates)
    assert set(selected) == {BLOG_AUTH, BLOG_POSTS}


def test_namespace_selector_ignores_blank_entries(candidates):
    assert NamespaceSelector([" ", "", "posts"]).select_subset(candidates) == {BLOG_POSTS: ["title", "body"]}


def test_subset_selector_is_abstract():
    with pytest.raises(TypeError):
        SubsetSelector()


def test_failed_keys_selector(candidates):
    selector = FailedKeysSelector({AUTH: ["throttle", "gone"], BLOG_POSTS: ["body"]})
    assert selector.select_subset(candidates) == {AUTH: ["throttle"], BLOG_POSTS: ["body"]}


def test_stop_signal():
    stop_signal = StopSignal()
    assert not stop_signal.is_set()
    stop_signal.set()
    assert stop_signal.is_set()


def test_first_interrupt_requests_stop_second_aborts():
    stop_signal = StopSignal()
    previous = install_interrupt_handler(stop_signal)
    try:
        handler = signal.getsignal(signal.SIGINT)
        handler(signal.SIGINT, None)
        assert stop_signal.is_set()
        with pytest.raises(KeyboardInterrupt):
            handler(signal.SIGINT, None)
    finally:
        signal.signal(signal.SIGINT, previous)
