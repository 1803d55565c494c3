"""Per-topic agent pipeline and the sequential batch runner.

Each topic moves through PLANNING -> DRAFTING -> ILLUSTRATING ->
IMAGE_SOURCING -> DONE, or stops in FAILED. Topics run one after another;
a failed topic is recorded and skipped instead of aborting the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .config import ProviderConfig, Settings, get_settings
from .errors import BatchFailedError
from .images import ImageResolver
from .models import AgentLog, ArticleDraft, ArticlePlan, GeneratedArticle, Topic, VisualBrief
from .providers import ProviderClient, build_provider
from .retry import RetryPolicy
from .workflow import run_editor_agent, run_visual_agent, run_writer_agent

logger = logging.getLogger(__name__)

ProgressFn = Callable[[str], None]


class PipelineStage(str, Enum):
    PLANNING = "planning"
    DRAFTING = "drafting"
    ILLUSTRATING = "illustrating"
    IMAGE_SOURCING = "image_sourcing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineContext:
    """State carried across the stages of a single topic."""

    topic: Topic
    style: str
    instructions: str = ""
    category: str = ""
    position: int = 1
    total: int = 1
    stage: PipelineStage = PipelineStage.PLANNING
    plan: ArticlePlan | None = None
    draft: ArticleDraft | None = None
    visual: VisualBrief | None = None
    image_url: str = ""

    def progress_label(self, description: str) -> str:
        return f"[{self.position}/{self.total}] “{self.topic.title}” {description}"


@dataclass
class TopicFailure:
    index: int
    topic: Topic
    stage: PipelineStage
    error: str


class BatchOutcome(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class BatchRunResult:
    requested: int
    articles: List[GeneratedArticle] = field(default_factory=list)
    failures: List[TopicFailure] = field(default_factory=list)

    @property
    def outcome(self) -> BatchOutcome:
        if not self.articles:
            return BatchOutcome.FAILED
        if len(self.articles) < self.requested:
            return BatchOutcome.PARTIAL
        return BatchOutcome.COMPLETE

    def raise_for_outcome(self) -> "BatchRunResult":
        """Raise BatchFailedError when no topic reached DONE; otherwise return self."""
        if self.outcome is BatchOutcome.FAILED:
            raise BatchFailedError(self.failures)
        return self


class AgentPipeline:
    """Run the fixed Editor -> Writer -> Visual -> Image sequence for topics."""

    def __init__(
        self,
        client: ProviderClient,
        resolver: ImageResolver | None = None,
        retry: RetryPolicy | None = None,
        *,
        progress: Optional[ProgressFn] = None,
        excerpt_chars: int = 500,
    ):
        self.client = client
        self.retry = retry or RetryPolicy()
        self.resolver = resolver
        self.progress = progress
        self.excerpt_chars = excerpt_chars

    def _enter(self, context: PipelineContext, stage: PipelineStage, description: str) -> None:
        context.stage = stage
        label = context.progress_label(description)
        logger.info(label)
        if self.progress:
            self.progress(label)

    def _resolver_for(self, config: ProviderConfig) -> ImageResolver:
        return self.resolver or ImageResolver(self.client, config, retry=self.retry)

    async def _run(self, context: PipelineContext, config: ProviderConfig) -> GeneratedArticle:
        self._enter(context, PipelineStage.PLANNING, "Chief editor is planning the angle...")
        context.plan = await run_editor_agent(
            context.topic, context.instructions, context.style, config, self.client, self.retry
        )

        self._enter(
            context,
            PipelineStage.DRAFTING,
            f"Senior writer is drafting the article (angle: {context.plan.angle})...",
        )
        context.draft = await run_writer_agent(
            context.topic, context.plan, config, self.client, self.retry
        )

        self._enter(context, PipelineStage.ILLUSTRATING, "Visual director is choosing the cover...")
        context.visual = await run_visual_agent(
            context.draft, config, self.client, self.retry, excerpt_chars=self.excerpt_chars
        )

        self._enter(context, PipelineStage.IMAGE_SOURCING, "Searching for cover images...")
        try:
            candidates = await self._resolver_for(config).resolve(context.visual.image_search_query)
            context.image_url = candidates[0] if candidates else ""
        except Exception as exc:
            logger.warning("Image search failed for %r: %s", context.topic.title, exc)
            context.image_url = ""

        article = GeneratedArticle(
            title=context.draft.title,
            summary=context.draft.summary,
            content=context.draft.content,
            image_search_query=context.visual.image_search_query,
            image_url=context.image_url,
            original_topic=context.topic.title,
            category=context.category,
            agent_log=AgentLog(
                angle=context.plan.angle, tone=context.plan.tone, style=context.style
            ),
        )
        context.stage = PipelineStage.DONE
        return article

    async def run_topic(
        self,
        topic: Topic,
        style: str,
        instructions: str,
        config: ProviderConfig,
        *,
        category: str = "",
    ) -> GeneratedArticle:
        """Run one topic to DONE; raises on any fatal stage failure."""
        context = PipelineContext(
            topic=topic, style=style, instructions=instructions, category=category
        )
        return await self._run(context, config)

    async def run_batch(
        self,
        topics: Sequence[Topic],
        style: str,
        instructions: str,
        config: ProviderConfig,
        *,
        category: str = "",
    ) -> BatchRunResult:
        """
        Run topics strictly in order, isolating failures per topic.

        Articles are returned in completion order; failures are captured
        alongside them. Call ``raise_for_outcome`` to turn "nothing
        succeeded" into an exception.
        """
        if not topics:
            raise ValueError("Select at least one topic.")
        if not style.strip():
            raise ValueError("A writing style is required.")

        result = BatchRunResult(requested=len(topics))
        for idx, topic in enumerate(topics):
            context = PipelineContext(
                topic=topic,
                style=style,
                instructions=instructions,
                category=category,
                position=idx + 1,
                total=len(topics),
            )
            try:
                article = await self._run(context, config)
            except Exception as exc:
                logger.error(
                    "Topic %d (%r) failed during %s: %s",
                    topic.id,
                    topic.title,
                    context.stage.value,
                    exc,
                )
                result.failures.append(
                    TopicFailure(index=idx, topic=topic, stage=context.stage, error=str(exc))
                )
                context.stage = PipelineStage.FAILED
                continue
            result.articles.append(article)

        logger.info(
            "Batch complete: %d succeeded, %d failed.", len(result.articles), len(result.failures)
        )
        return result


async def run_batch(
    topics: Sequence[Topic],
    style: str,
    instructions: str,
    config: ProviderConfig,
    *,
    category: str = "",
    client: ProviderClient | None = None,
    resolver: ImageResolver | None = None,
    retry: RetryPolicy | None = None,
    progress: Optional[ProgressFn] = None,
    settings: Settings | None = None,
) -> BatchRunResult:
    """Build a pipeline from settings and run ``topics`` through it."""
    settings = settings or get_settings()
    owns_client = client is None
    client = client or build_provider(config, settings)
    retry = retry or RetryPolicy.from_settings(settings)
    resolver = resolver or ImageResolver(
        client, config, retry=retry, limit=settings.image_candidate_limit
    )
    pipeline = AgentPipeline(
        client,
        resolver,
        retry,
        progress=progress,
        excerpt_chars=settings.visual_excerpt_chars,
    )
    try:
        return await pipeline.run_batch(topics, style, instructions, config, category=category)
    finally:
        if owns_client:
            await client.aclose()
