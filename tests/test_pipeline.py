import asyncio
import json

import pytest

from article_studio import pipeline
from article_studio.config import ProviderConfig, Settings
from article_studio.errors import BatchFailedError, FatalProviderError, TransientProviderError
from article_studio.images import EXPANSION_SYSTEM, ImageResolver
from article_studio.models import Topic
from article_studio.pipeline import (
    AgentPipeline,
    BatchOutcome,
    PipelineStage,
    run_batch,
)
from article_studio.providers import ProviderClient, ProviderReply
from article_studio.retry import RetryPolicy
from article_studio.workflow import EDITOR_ROLE, VISUAL_ROLE, WRITER_ROLE

TOPICS = [
    Topic(id=1, title="First story", description="one"),
    Topic(id=2, title="Second story", description="two"),
    Topic(id=3, title="Third story", description="three"),
]


class NewsroomStub(ProviderClient):
    """Plays editor, writer, visual director and image researcher.

    ``fail`` maps a role to a callable ``(prompt) -> Exception | str | None``:
    an exception is raised, a string replaces the reply, ``None`` keeps the
    default answer.
    """

    def __init__(self, **fail):
        self.fail = fail
        self.roles = []

    async def invoke(self, prompt, system_instruction, config, contract=None, *, tier=None, temperature=None):
        role = self._role(system_instruction)
        self.roles.append(role)
        override = self.fail.get(role, lambda _prompt: None)(prompt)
        if isinstance(override, Exception):
            raise override
        if isinstance(override, str):
            return ProviderReply(text=override)
        return ProviderReply(text=self._default(role, prompt))

    @staticmethod
    def _role(system):
        for name, marker in (
            ("editor", EDITOR_ROLE),
            ("writer", WRITER_ROLE),
            ("visual", VISUAL_ROLE),
            ("images", EXPANSION_SYSTEM),
        ):
            if marker in system:
                return name
        return "unknown"

    @staticmethod
    def _default(role, prompt):
        title = next(t.title for t in TOPICS if t.title in prompt) if role in ("editor", "writer") else ""
        if role == "editor":
            return json.dumps(
                {"angle": f"angle for {title}", "tone": "calm", "targetAudience": "all", "outline": ["Intro", "Outro"]}
            )
        if role == "writer":
            return "```json\n" + json.dumps(
                {"title": f"Draft: {title}", "summary": "short", "content": "## Intro\n\nText\n\n## Outro"}
            ) + "\n```"
        if role == "visual":
            return '{"imageSearchQuery": "newsroom desk"}'
        return '{"keywords": []}'


def _no_sleep_retry():
    async def fake_sleep(seconds):
        return None

    return RetryPolicy(sleep=fake_sleep)


def _run(client, topics=TOPICS, style="Professional", resolver=None, progress=None, **kwargs):
    return asyncio.run(
        run_batch(
            topics,
            style,
            "",
            ProviderConfig(),
            category="Technology & AI",
            client=client,
            resolver=resolver,
            retry=_no_sleep_retry(),
            progress=progress,
            settings=Settings(_env_file=None),
            **kwargs,
        )
    )


def test_all_topics_succeed_with_requested_style():
    client = NewsroomStub()

    result = _run(client)

    assert result.outcome is BatchOutcome.COMPLETE
    assert len(result.articles) == len(TOPICS)
    assert [a.original_topic for a in result.articles] == [t.title for t in TOPICS]
    for article in result.articles:
        assert article.id and article.title and article.content
        assert article.agent_log.style == "Professional"
        assert article.category == "Technology & AI"
        assert article.image_search_query == "newsroom desk"
        assert article.image_url.startswith("https://tse")
    assert len({a.id for a in result.articles}) == len(TOPICS)
    assert result.articles[0].agent_log.angle == "angle for First story"
    assert result.articles[0].title == "Draft: First story"


def test_writer_failure_is_isolated_to_its_topic():
    client = NewsroomStub(
        writer=lambda prompt: FatalProviderError(400, "bad request") if "Second story" in prompt else None
    )

    result = _run(client)

    assert result.outcome is BatchOutcome.PARTIAL
    assert [a.original_topic for a in result.articles] == ["First story", "Third story"]
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.index == 1
    assert failure.topic.id == 2
    assert failure.stage is PipelineStage.DRAFTING
    assert "bad request" in failure.error
    assert result.raise_for_outcome() is result


def test_malformed_editor_json_fails_the_whole_batch():
    client = NewsroomStub(editor=lambda prompt: "this is not json")

    result = _run(client)

    assert result.articles == []
    assert result.outcome is BatchOutcome.FAILED
    assert {f.stage for f in result.failures} == {PipelineStage.PLANNING}
    with pytest.raises(BatchFailedError) as excinfo:
        result.raise_for_outcome()
    assert len(excinfo.value.failures) == len(TOPICS)
    # A failed editor stops the topic before any other role is consulted.
    assert set(client.roles) == {"editor"}


def test_transient_errors_are_retried_inside_a_stage():
    attempts = []

    def flaky(prompt):
        attempts.append(prompt)
        return TransientProviderError(429, "slow down") if len(attempts) == 1 else None

    result = _run(NewsroomStub(editor=flaky), topics=TOPICS[:1])

    assert result.outcome is BatchOutcome.COMPLETE
    assert len(attempts) == 2


def test_visual_failure_falls_back_to_draft_title():
    client = NewsroomStub(visual=lambda prompt: FatalProviderError(500, "boom"))

    result = _run(client, topics=TOPICS[:1])

    assert result.articles[0].image_search_query == "Draft: First story"


def test_image_failure_leaves_cover_empty():
    class BrokenResolver:
        async def resolve(self, query, exclude=None):
            raise RuntimeError("image proxy down")

    result = _run(NewsroomStub(), topics=TOPICS[:1], resolver=BrokenResolver())

    assert result.outcome is BatchOutcome.COMPLETE
    assert result.articles[0].image_url == ""


def test_empty_candidate_list_leaves_cover_empty():
    class EmptyResolver:
        async def resolve(self, query, exclude=None):
            return []

    result = _run(NewsroomStub(), topics=TOPICS[:1], resolver=EmptyResolver())

    assert result.articles[0].image_url == ""


def test_progress_labels_name_position_and_stage():
    labels = []

    _run(NewsroomStub(), topics=TOPICS[:2], resolver=ImageResolver(), progress=labels.append)

    assert len(labels) == 8
    assert labels[0] == "[1/2] “First story” Chief editor is planning the angle..."
    assert labels[1].startswith("[1/2] “First story” Senior writer is drafting")
    assert "angle for First story" in labels[1]
    assert labels[4].startswith("[2/2] “Second story”")


def test_empty_selection_is_rejected():
    with pytest.raises(ValueError):
        _run(NewsroomStub(), topics=[])


def test_blank_style_is_rejected():
    with pytest.raises(ValueError):
        _run(NewsroomStub(), style="  ")


def test_run_topic_raises_instead_of_collecting():
    client = NewsroomStub(writer=lambda prompt: FatalProviderError(401, "bad key"))
    pipeline = AgentPipeline(client, ImageResolver(), _no_sleep_retry())

    with pytest.raises(FatalProviderError):
        asyncio.run(pipeline.run_topic(TOPICS[0], "Humorous", "", ProviderConfig()))


def test_run_batch_closes_a_provider_it_built(monkeypatch):
    class ClosingNewsroom(NewsroomStub):
        closed = False

        async def aclose(self):
            self.closed = True

    built = ClosingNewsroom()
    monkeypatch.setattr(pipeline, "build_provider", lambda config, settings: built)

    result = _run(None, topics=TOPICS[:1])

    assert result.outcome is BatchOutcome.COMPLETE
    assert built.closed is True


def test_run_batch_leaves_an_injected_provider_open():
    class ClosingNewsroom(NewsroomStub):
        closed = False

        async def aclose(self):
            self.closed = True

    client = ClosingNewsroom()
    _run(client, topics=TOPICS[:1])

    assert client.closed is False
