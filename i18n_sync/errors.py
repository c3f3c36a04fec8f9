"""Exception types raised across the i18n sync pipeline."""
from typing import Optional


class I18nSyncError(Exception):
    """Base class for all errors raised by the sync tool."""


class ConfigurationError(I18nSyncError):
    """Raised for a bad root path, a malformed config file or a missing credential."""


class ExtractionWarning(I18nSyncError):
    """Raised by the source reader for a single unreadable file. Callers log it and continue."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not read '{path}': {reason}")
        self.path = path
        self.reason = reason


class TranslationServiceError(I18nSyncError):
    """
    A transient failure of the text-generation service.

    Subclasses decide which backoff curve the orchestrator applies.
    ``retry_after`` carries a server-provided delay hint in seconds, when one was sent.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class QuotaExceededError(TranslationServiceError):
    """Rate limit or quota window hit."""


class ServiceTransportError(TranslationServiceError):
    """Timeouts, dropped connections and 5xx responses."""


class MalformedResponseError(TranslationServiceError):
    """The service answered, but not with JSON of the expected shape."""
