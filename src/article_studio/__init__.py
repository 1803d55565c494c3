"""Generate publish-ready short articles with a chain of specialist LLM agents."""

from .config import ProviderConfig, ProviderKind, Settings, get_settings
from .errors import (
    ArticleStudioError,
    BatchFailedError,
    ConfigurationError,
    FatalProviderError,
    ParseError,
    ProviderError,
    TransientProviderError,
)
from .export import copy_to_clipboard, export_markdown, render_export
from .images import ImageResolver, resolve_images
from .models import GeneratedArticle, SearchResult, Topic
from .pipeline import BatchOutcome, BatchRunResult, run_batch
from .workflow import search_topics

__all__ = [
    "ArticleStudioError",
    "BatchFailedError",
    "BatchOutcome",
    "BatchRunResult",
    "ConfigurationError",
    "FatalProviderError",
    "GeneratedArticle",
    "ImageResolver",
    "ParseError",
    "ProviderConfig",
    "ProviderError",
    "ProviderKind",
    "SearchResult",
    "Settings",
    "Topic",
    "TransientProviderError",
    "copy_to_clipboard",
    "export_markdown",
    "get_settings",
    "render_export",
    "resolve_images",
    "run_batch",
    "search_topics",
]
