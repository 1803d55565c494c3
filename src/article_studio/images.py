"""Cover image candidates: deterministic proxy URLs plus model-suggested keywords."""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence
from urllib.parse import quote

from .config import ProviderConfig, Settings, get_settings
from .models import KeywordExpansion
from .providers import ProviderClient
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

IMAGE_PROXY_TEMPLATE = "https://tse{shard}.mm.bing.net/th?q={query}&w=800&h=450&c=7&rs=1&p=0"
PROXY_SHARDS = 4
BASELINE_MODIFIERS: tuple[str, ...] = (
    "",
    "photography",
    "illustration",
    "wallpaper",
    "concept art",
    "hd",
)
EXPANSION_MODIFIERS: tuple[str, ...] = ("", "photography")
EXPANSION_KEYWORDS = 3
DEFAULT_LIMIT = 10

EXPANSION_SYSTEM = (
    "You are an image researcher for a news desk. You turn a topic into short "
    "English search phrases that find striking, visually distinct cover photos."
)


def exclusion_terms(exclude: Optional[str]) -> List[str]:
    """Split a user exclude string ("blurry, text watermark") into single terms."""
    if not exclude:
        return []
    return [term for term in re.split(r"[,\s]+", exclude.strip()) if term]


def negate(query: str, terms: Sequence[str]) -> str:
    """Append ``-term`` for each excluded term using the search-engine exclude operator."""
    parts = [query.strip()] + [f"-{term.lstrip('-')}" for term in terms]
    return " ".join(part for part in parts if part)


def proxy_url(query: str, shard: int) -> str:
    return IMAGE_PROXY_TEMPLATE.format(shard=shard % PROXY_SHARDS + 1, query=quote(query, safe=""))


def synthesize_candidates(
    query: str,
    exclude: Optional[str] = None,
    modifiers: Iterable[str] = BASELINE_MODIFIERS,
) -> List[str]:
    """Build proxy URLs for ``query`` x ``modifiers`` without any network access."""
    terms = exclusion_terms(exclude)
    urls: List[str] = []
    for idx, modifier in enumerate(modifiers):
        variant = f"{query.strip()} {modifier}".strip()
        urls.append(proxy_url(negate(variant, terms), idx))
    return urls


def _merge(*groups: Iterable[str], limit: int) -> List[str]:
    seen: set[str] = set()
    merged: List[str] = []
    for group in groups:
        for url in group:
            if url in seen:
                continue
            seen.add(url)
            merged.append(url)
    return merged[:limit]


class ImageResolver:
    """Resolve a text query into an ordered, deduplicated list of image URLs.

    The baseline set never touches the network. When a provider is supplied
    the model is asked for alternative keywords, whose candidates are merged
    after the baseline; any failure there is logged and ignored.
    """

    def __init__(
        self,
        client: ProviderClient | None = None,
        config: ProviderConfig | None = None,
        *,
        retry: RetryPolicy | None = None,
        limit: int = DEFAULT_LIMIT,
    ):
        self.client = client
        self.config = config or ProviderConfig()
        self.retry = retry or RetryPolicy()
        self.limit = limit

    async def resolve(self, query: str, exclude: Optional[str] = None) -> List[str]:
        if not query or not query.strip():
            return []
        baseline = synthesize_candidates(query, exclude)
        expanded: List[str] = []
        for keyword in await self._expand(query):
            expanded.extend(synthesize_candidates(keyword, exclude, EXPANSION_MODIFIERS))
        return _merge(baseline, expanded, limit=self.limit)

    async def _expand(self, query: str) -> List[str]:
        if self.client is None:
            return []
        client = self.client
        prompt = (
            f'Topic: "{query.strip()}"\n\n'
            f"Suggest {EXPANSION_KEYWORDS} visually distinct English image search phrases "
            "(2-5 words each) that would find a good cover photo for this topic. "
            'Return JSON: {"keywords": ["...", "...", "..."]}'
        )
        try:
            expansion = await self.retry.call(
                lambda: client.invoke_json(prompt, EXPANSION_SYSTEM, self.config, KeywordExpansion)
            )
        except Exception as exc:  # expansion is best-effort
            logger.warning("Image keyword expansion failed for %r: %s", query, exc)
            return []
        keywords = [k.strip() for k in expansion.keywords if k and k.strip()]
        if not keywords:
            logger.info("Image keyword expansion returned no keywords for %r", query)
        return keywords[:EXPANSION_KEYWORDS]


async def resolve_images(
    query: str,
    config: ProviderConfig,
    exclude: Optional[str] = None,
    *,
    client: ProviderClient | None = None,
    retry: RetryPolicy | None = None,
    settings: Settings | None = None,
) -> List[str]:
    """Convenience wrapper: resolve candidates with the configured provider."""
    settings = settings or get_settings()
    resolver = ImageResolver(
        client,
        config,
        retry=retry or RetryPolicy.from_settings(settings),
        limit=settings.image_candidate_limit,
    )
    return await resolver.resolve(query, exclude)
