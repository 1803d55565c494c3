"""Specialist stages of the article workflow.

- search (grounded news search, then structured topic extraction)
- editor (angle / tone / audience / outline)
- writer (full markdown draft following the outline)
- visual (image search query for the cover)

Each stage is a plain async function taking an explicit ``ProviderConfig``,
a ``ProviderClient`` and a ``RetryPolicy``; tests inject stub clients.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .config import ProviderConfig, Settings, get_settings
from .errors import ParseError
from .models import (
    ArticleDraft,
    ArticlePlan,
    SearchResult,
    Topic,
    TopicList,
    VisualBrief,
)
from .providers import (
    SEARCH_TEMPERATURE,
    ModelTier,
    OutputContract,
    ProviderClient,
    build_provider,
)
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"

SEARCH_ROLE = (
    "You are a news researcher. Use web search to find what is happening today "
    "and report it factually, with specific events, names and numbers."
)
EXTRACT_ROLE = "You are a news editor's assistant who turns research notes into clean JSON."
EDITOR_ROLE = (
    "You are a chief editor with 20 years of experience running a popular "
    "official account on a mobile publishing platform."
)
WRITER_ROLE = "You are a senior new-media columnist who writes for mobile readers."
VISUAL_ROLE = "You are a visual art director who picks cover images for articles."

NO_RESULTS_SUMMARY = "No relevant results found."


# --- Helpers --------------------------------------------------------------


def _load_prompt_file(filename: str) -> str:
    path = PROMPTS_DIR / filename
    return path.read_text(encoding="utf-8")


def _render_prompt(filename: str, **fields: object) -> str:
    return _load_prompt_file(filename).format(**fields)


def compose_system_instruction(role: str, config: ProviderConfig) -> str:
    """Prefix the user's global rules, verbatim, to an agent's role instruction."""
    if not config.global_rules.strip():
        return role
    return f"{config.global_rules}\n\n{role}"


def _normalize_topics(topics: List[Topic], limit: int) -> List[Topic]:
    """Cap the list and make ids unique within the result set."""
    capped = topics[:limit]
    if len({topic.id for topic in capped}) != len(capped):
        logger.info("Topic ids were not unique; renumbering %d topics.", len(capped))
        capped = [topic.model_copy(update={"id": idx}) for idx, topic in enumerate(capped, start=1)]
    return capped


# --- Stages ---------------------------------------------------------------


async def search_topics(
    category: str,
    config: ProviderConfig,
    client: ProviderClient | None = None,
    retry: RetryPolicy | None = None,
    settings: Settings | None = None,
) -> SearchResult:
    """
    Find today's trending topics for ``category``.

    Two calls, because grounding and forced JSON cannot share one request:
    a search-augmented free-text call, then a schema-constrained extraction
    over its text. Failures of the first call abort the search; an
    extraction reply that does not parse degrades to an empty topic list.
    """
    if not category.strip():
        raise ValueError("category must not be empty.")
    settings = settings or get_settings()
    if client is None:
        client = build_provider(config, settings)
        try:
            return await search_topics(category, config, client, retry, settings)
        finally:
            await client.aclose()
    retry = retry or RetryPolicy.from_settings(settings)
    count = settings.topic_target

    search_prompt = _render_prompt("search.txt", category=category.strip(), count=count)
    reply = await retry.call(
        lambda: client.invoke(
            search_prompt,
            SEARCH_ROLE,
            config,
            OutputContract.search(),
            temperature=SEARCH_TEMPERATURE,
        )
    )
    raw_summary = reply.text.strip() or NO_RESULTS_SUMMARY
    logger.info("Search for %r returned %d source(s).", category, len(reply.sources))

    extract_prompt = _render_prompt("topics.txt", digest=raw_summary, count=count)
    try:
        parsed = await retry.call(
            lambda: client.invoke_json(extract_prompt, EXTRACT_ROLE, config, TopicList)
        )
        topics = _normalize_topics(parsed.topics, count)
    except ParseError as exc:
        logger.warning("Topic extraction for %r did not parse: %s", category, exc)
        topics = []

    if len(topics) < count:
        logger.warning("Search for %r produced %d of %d topics.", category, len(topics), count)
    return SearchResult(raw_summary=raw_summary, sources=reply.sources, topics=topics)


async def run_editor_agent(
    topic: Topic,
    instructions: str,
    style: str,
    config: ProviderConfig,
    client: ProviderClient,
    retry: RetryPolicy,
) -> ArticlePlan:
    """Chief editor: choose the angle, tone and audience and outline the piece."""
    if not style.strip():
        raise ValueError("A writing style is required.")
    prompt = _render_prompt(
        "editor.txt",
        title=topic.title,
        description=topic.description or "none",
        style=style.strip(),
        instructions=instructions.strip() or "none",
    )
    system = compose_system_instruction(EDITOR_ROLE, config)
    return await retry.call(lambda: client.invoke_json(prompt, system, config, ArticlePlan))


async def run_writer_agent(
    topic: Topic,
    plan: ArticlePlan,
    config: ProviderConfig,
    client: ProviderClient,
    retry: RetryPolicy,
) -> ArticleDraft:
    """Senior writer: the only stage on the writer (slower, stronger) model tier."""
    prompt = _render_prompt(
        "writer.txt",
        title=topic.title,
        description=topic.description or "none",
        angle=plan.angle,
        tone=plan.tone,
        audience=plan.target_audience or "general readers",
        outline=" -> ".join(plan.outline),
    )
    system = compose_system_instruction(WRITER_ROLE, config)
    return await retry.call(
        lambda: client.invoke_json(prompt, system, config, ArticleDraft, tier=ModelTier.WRITER)
    )


async def run_visual_agent(
    draft: ArticleDraft,
    config: ProviderConfig,
    client: ProviderClient,
    retry: RetryPolicy,
    *,
    excerpt_chars: int = 500,
) -> VisualBrief:
    """Visual director: pick a cover query; falls back to the draft title on any failure."""
    prompt = _render_prompt("visual.txt", title=draft.title, excerpt=draft.content[:excerpt_chars])
    system = compose_system_instruction(VISUAL_ROLE, config)
    try:
        return await retry.call(lambda: client.invoke_json(prompt, system, config, VisualBrief))
    except Exception as exc:
        logger.warning("Visual agent failed for %r; using the title as query: %s", draft.title, exc)
        return VisualBrief(image_search_query=draft.title)
