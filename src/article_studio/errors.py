"""Error taxonomy shared by the provider layer, pipeline, store and surfaces."""

from __future__ import annotations

from typing import Any

# Rate limited / service unavailable. Everything else is surfaced immediately.
TRANSIENT_STATUSES = frozenset({429, 503})


class ArticleStudioError(Exception):
    """Base class for every error raised by article_studio."""


class ProviderError(ArticleStudioError):
    """A model provider call failed; ``status`` carries the transport status code."""

    def __init__(self, status: int | None, message: str):
        super().__init__(f"[{status if status is not None else 'no status'}] {message}")
        self.status = status
        self.message = message

    @property
    def transient(self) -> bool:
        return self.status in TRANSIENT_STATUSES


class TransientProviderError(ProviderError):
    """Rate limited or temporarily unavailable; eligible for retry."""


class FatalProviderError(ProviderError):
    """Auth failure, malformed request or unsupported feature."""


def provider_error(status: int | None, message: str) -> ProviderError:
    """Build the right ProviderError subclass for a transport status."""
    if status in TRANSIENT_STATUSES:
        return TransientProviderError(status, message)
    return FatalProviderError(status, message)


class ParseError(ArticleStudioError):
    """The model returned text that does not match the requested structure."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ConfigurationError(ArticleStudioError):
    """Provider settings are incomplete; raised before any network call."""


class ClipboardUnavailable(ArticleStudioError):
    """The runtime cannot accept a styled-markup clipboard write."""


class BatchFailedError(ArticleStudioError):
    """Every topic in a batch failed; carries the per-topic failures."""

    def __init__(self, failures: list[Any]):
        count = len(failures)
        super().__init__(
            f"All {count} topic(s) failed to generate. "
            "If you use a custom provider, check its base URL, key and model."
        )
        self.failures = failures
