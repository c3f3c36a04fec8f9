"""
Operator-facing seams: a cooperative stop flag and key subset selection.

The pipeline only ever calls ``StopSignal.is_set`` and ``select_subset``;
how the operator expresses either is decided here.
"""
import logging
import signal
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from i18n_sync.store import LABEL_SEPARATOR, NamespaceId

logger = logging.getLogger(__name__)


class StopSignal:
    """Thread-safe flag polled by the serial driver between batches."""

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


def install_interrupt_handler(stop_signal: StopSignal):
    """
    Make the first Ctrl+C request a cooperative stop. A second one interrupts as usual.
    Returns the previous handler so callers can restore it.
    """
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame):
        if stop_signal.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        logger.warning("Interrupt received: finishing the current batch, then stopping. Press Ctrl+C again to abort.")
        stop_signal.set()

    signal.signal(signal.SIGINT, _handler)
    return previous


class SubsetSelector(ABC):
    """Chooses which namespaces (and keys) take part in a run."""

    @abstractmethod
    def select_subset(self, candidates: Dict[NamespaceId, List[str]]) -> Dict[NamespaceId, List[str]]:
        """Return the chosen namespaces mapped to their chosen in-namespace keys."""


class AllSelector(SubsetSelector):
    def select_subset(self, candidates):
        return dict(candidates)


class NamespaceSelector(SubsetSelector):
    """
    Keeps namespaces named in config.

    Entries may be full labels (``blog::messages``) or bare names (``messages``),
    bare names match in every origin.
    """

    def __init__(self, namespaces: Sequence[str]):
        self.namespaces = [ns.strip() for ns in namespaces if ns and ns.strip()]

    def _matches(self, namespace: NamespaceId) -> bool:
        for entry in self.namespaces:
            if LABEL_SEPARATOR in entry:
                if entry == namespace.label:
                    return True
            elif entry == namespace.name or entry == namespace.origin:
                return True
        return False

    def select_subset(self, candidates):
        selected = {ns: keys for ns, keys in candidates.items() if self._matches(ns)}
        unmatched = [entry for entry in self.namespaces
                     if not any(entry in (ns.label, ns.name, ns.origin) for ns in candidates)]
        for entry in unmatched:
            logger.warning("Configured namespace '%s' matched nothing.", entry)
        return selected


class FailedKeysSelector(SubsetSelector):
    """Restricts a run to the keys listed in a previous run's failed-keys log."""

    def __init__(self, failed: Dict[NamespaceId, List[str]]):
        self.failed = failed

    def select_subset(self, candidates):
        selected: Dict[NamespaceId, List[str]] = {}
        for namespace, keys in candidates.items():
            wanted = set(self.failed.get(namespace, []))
            chosen = [key for key in keys if key in wanted]
            if chosen:
                selected[namespace] = chosen
        logger.info("Retrying %d previously failed key(s).", sum(len(keys) for keys in selected.values()))
        return selected

