import asyncio
import json

import pytest

from article_studio import workflow
from article_studio.config import ProviderConfig, Settings
from article_studio.errors import FatalProviderError, ParseError
from article_studio.models import ArticleDraft, ArticlePlan, NewsSource, Topic
from article_studio.providers import ModelTier, OutputMode, ProviderClient, ProviderReply
from article_studio.retry import RetryPolicy
from article_studio.workflow import (
    EDITOR_ROLE,
    NO_RESULTS_SUMMARY,
    compose_system_instruction,
    run_editor_agent,
    run_visual_agent,
    run_writer_agent,
    search_topics,
)


class ScriptedProvider(ProviderClient):
    """Answer by output mode; records every call."""

    def __init__(self, search="", json_reply="{}", search_error=None, json_error=None, sources=()):
        self.search = search
        self.json_reply = json_reply
        self.search_error = search_error
        self.json_error = json_error
        self.sources = list(sources)
        self.calls = []

    async def invoke(self, prompt, system_instruction, config, contract=None, *, tier=ModelTier.FAST, temperature=None):
        self.calls.append(
            {
                "prompt": prompt,
                "system": system_instruction,
                "mode": contract.mode if contract else OutputMode.TEXT,
                "tier": tier,
                "temperature": temperature,
            }
        )
        if contract is not None and contract.mode is OutputMode.SEARCH:
            if self.search_error:
                raise self.search_error
            return ProviderReply(text=self.search, sources=self.sources)
        if self.json_error:
            raise self.json_error
        return ProviderReply(text=self.json_reply)


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def _topics_json(count, start=1, same_id=False):
    return json.dumps(
        {
            "topics": [
                {"id": 1 if same_id else start + i, "title": f"Story {i}", "description": "d"}
                for i in range(count)
            ]
        }
    )


def _search(provider, category="Technology & AI", **settings):
    return asyncio.run(
        search_topics(
            category,
            ProviderConfig(),
            client=provider,
            retry=RetryPolicy(),
            settings=_settings(**settings),
        )
    )


def test_search_runs_grounded_call_then_extraction():
    sources = [NewsSource(title="Reuters", uri="https://reuters.example/a")]
    provider = ScriptedProvider(search="Chipmaker X ...", json_reply=_topics_json(3), sources=sources)

    result = _search(provider)

    assert [c["mode"] for c in provider.calls] == [OutputMode.SEARCH, OutputMode.JSON]
    assert provider.calls[0]["temperature"] == 0.3
    assert "Technology & AI" in provider.calls[0]["prompt"]
    assert "Chipmaker X ..." in provider.calls[1]["prompt"]
    assert result.raw_summary == "Chipmaker X ..."
    assert result.sources == sources
    assert [t.id for t in result.topics] == [1, 2, 3]


def test_search_with_empty_text_uses_placeholder_summary():
    result = _search(ScriptedProvider(search="", json_reply='{"topics": []}'))

    assert result.raw_summary == NO_RESULTS_SUMMARY
    assert result.topics == []


def test_unparseable_extraction_degrades_to_empty_topics():
    provider = ScriptedProvider(search="digest", json_reply="I could not find anything.")

    result = _search(provider)

    assert result.raw_summary == "digest"
    assert result.topics == []


def test_topics_are_capped_and_renumbered_when_ids_collide():
    provider = ScriptedProvider(search="digest", json_reply=_topics_json(12, same_id=True))

    result = _search(provider, topic_target=10)

    assert len(result.topics) == 10
    assert [t.id for t in result.topics] == list(range(1, 11))


def test_unique_ids_are_preserved():
    provider = ScriptedProvider(search="digest", json_reply=_topics_json(2, start=7))

    assert [t.id for t in _search(provider).topics] == [7, 8]


def test_search_call_failure_aborts_search():
    provider = ScriptedProvider(search_error=FatalProviderError(401, "bad key"))

    with pytest.raises(FatalProviderError):
        _search(provider)
    assert len(provider.calls) == 1


def test_search_closes_the_provider_it_builds(monkeypatch):
    class ClosingProvider(ScriptedProvider):
        closed = False

        async def aclose(self):
            self.closed = True

    provider = ClosingProvider(search_error=FatalProviderError(401, "bad key"))
    monkeypatch.setattr(workflow, "build_provider", lambda config, settings: provider)

    with pytest.raises(FatalProviderError):
        asyncio.run(
            search_topics("General", ProviderConfig(), retry=RetryPolicy(), settings=_settings())
        )
    assert provider.closed is True


def test_blank_category_is_rejected():
    with pytest.raises(ValueError):
        _search(ScriptedProvider(), category="  ")


def test_global_rules_prefix_system_instruction_verbatim():
    config = ProviderConfig(global_rules="Never use emoji.\n")

    assert compose_system_instruction(EDITOR_ROLE, config) == f"Never use emoji.\n\n\n{EDITOR_ROLE}"
    assert compose_system_instruction(EDITOR_ROLE, ProviderConfig()) == EDITOR_ROLE


def test_editor_agent_passes_style_and_rules():
    reply = json.dumps(
        {"angle": "Who pays", "tone": "sharp", "targetAudience": "commuters", "outline": ["A", " ", "B"]}
    )
    provider = ScriptedProvider(json_reply=reply)
    config = ProviderConfig(global_rules="Write in British English.")

    plan = asyncio.run(
        run_editor_agent(
            Topic(id=1, title="Fare hike"), "Keep it short", "Sharp", config, provider, RetryPolicy()
        )
    )

    assert plan.outline == ["A", "B"]
    call = provider.calls[0]
    assert call["system"].startswith("Write in British English.\n\n")
    assert "Sharp" in call["prompt"]
    assert "Keep it short" in call["prompt"]
    assert call["tier"] is ModelTier.FAST


def test_editor_agent_rejects_missing_outline():
    provider = ScriptedProvider(json_reply='{"angle": "a", "tone": "t", "outline": []}')

    with pytest.raises(ParseError):
        asyncio.run(
            run_editor_agent(Topic(id=1, title="x"), "", "Professional", ProviderConfig(), provider, RetryPolicy())
        )


def test_editor_agent_requires_style():
    with pytest.raises(ValueError):
        asyncio.run(
            run_editor_agent(Topic(id=1, title="x"), "", " ", ProviderConfig(), ScriptedProvider(), RetryPolicy())
        )


def test_writer_agent_uses_writer_tier_and_outline_order():
    reply = json.dumps({"title": "T", "summary": "S", "content": "## One\n\n## Two"})
    provider = ScriptedProvider(json_reply=reply)
    plan = ArticlePlan(angle="a", tone="t", outline=["One", "Two"])

    draft = asyncio.run(
        run_writer_agent(Topic(id=1, title="x"), plan, ProviderConfig(), provider, RetryPolicy())
    )

    assert draft.title == "T"
    assert provider.calls[0]["tier"] is ModelTier.WRITER
    assert "One -> Two" in provider.calls[0]["prompt"]


def test_visual_agent_sees_only_an_excerpt():
    provider = ScriptedProvider(json_reply='{"imageSearchQuery": "city lights night"}')
    draft = ArticleDraft(title="T", summary="S", content="a" * 500 + "TAIL")

    brief = asyncio.run(
        run_visual_agent(draft, ProviderConfig(), provider, RetryPolicy(), excerpt_chars=500)
    )

    assert brief.image_search_query == "city lights night"
    assert "TAIL" not in provider.calls[0]["prompt"]


@pytest.mark.parametrize(
    "provider",
    [
        ScriptedProvider(json_reply="not json"),
        ScriptedProvider(json_reply='{"imageSearchQuery": ""}'),
        ScriptedProvider(json_error=FatalProviderError(500, "boom")),
    ],
)
def test_visual_agent_falls_back_to_title(provider):
    draft = ArticleDraft(title="Fare hike explained", summary="S", content="body")

    brief = asyncio.run(run_visual_agent(draft, ProviderConfig(), provider, RetryPolicy()))

    assert brief.image_search_query == "Fare hike explained"
