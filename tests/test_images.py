import asyncio
from urllib.parse import parse_qs, urlparse

from article_studio.config import ProviderConfig
from article_studio.errors import FatalProviderError
from article_studio.images import (
    BASELINE_MODIFIERS,
    ImageResolver,
    exclusion_terms,
    negate,
    synthesize_candidates,
)
from article_studio.providers import ProviderClient, ProviderReply


class StubProvider(ProviderClient):
    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    async def invoke(self, prompt, system_instruction, config, contract=None, *, tier=None, temperature=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return ProviderReply(text=self.reply)


def _query_of(url):
    return parse_qs(urlparse(url).query)["q"][0]


def _resolve(resolver, query, exclude=None):
    return asyncio.run(resolver.resolve(query, exclude))


def test_baseline_without_client_is_deterministic():
    resolver = ImageResolver()

    first = _resolve(resolver, "mars rover")
    second = _resolve(resolver, "mars rover")

    assert first == second
    assert len(first) == len(BASELINE_MODIFIERS)
    assert _query_of(first[0]) == "mars rover"
    assert _query_of(first[1]) == "mars rover photography"
    assert first[0].startswith("https://tse1.mm.bing.net/th?q=")


def test_blank_query_returns_nothing():
    assert _resolve(ImageResolver(), "   ") == []


def test_expansion_failure_still_returns_baseline():
    provider = StubProvider(error=FatalProviderError(401, "bad key"))
    resolver = ImageResolver(provider, ProviderConfig())

    urls = _resolve(resolver, "electric cars")

    assert len(urls) >= 1
    assert urls == synthesize_candidates("electric cars")
    assert len(provider.prompts) == 1


def test_unparseable_expansion_still_returns_baseline():
    resolver = ImageResolver(StubProvider(reply="no json here"), ProviderConfig())

    assert _resolve(resolver, "electric cars") == synthesize_candidates("electric cars")


def test_expanded_keywords_follow_baseline_and_are_capped():
    reply = '{"keywords": ["ev charging station", "battery factory", "highway traffic", "extra"]}'
    resolver = ImageResolver(StubProvider(reply=reply), ProviderConfig(), limit=10)

    urls = _resolve(resolver, "electric cars")

    assert len(urls) == 10
    assert urls[: len(BASELINE_MODIFIERS)] == synthesize_candidates("electric cars")
    expanded = [_query_of(u) for u in urls[len(BASELINE_MODIFIERS):]]
    assert expanded == [
        "ev charging station",
        "ev charging station photography",
        "battery factory",
        "battery factory photography",
    ]


def test_duplicate_candidates_are_removed():
    reply = '{"keywords": ["electric cars"]}'
    resolver = ImageResolver(StubProvider(reply=reply), ProviderConfig())

    urls = _resolve(resolver, "electric cars")

    assert len(urls) == len(set(urls))
    assert urls == synthesize_candidates("electric cars")


def test_exclusion_applies_to_every_candidate():
    reply = '{"keywords": ["city skyline", "night market"]}'
    resolver = ImageResolver(StubProvider(reply=reply), ProviderConfig())

    urls = _resolve(resolver, "tokyo travel", exclude="blurry")

    assert urls
    for url in urls:
        assert "-blurry" in _query_of(url).split()


def test_no_negation_tokens_without_exclude():
    reply = '{"keywords": ["city skyline"]}'
    resolver = ImageResolver(StubProvider(reply=reply), ProviderConfig())

    for url in _resolve(resolver, "tokyo travel"):
        assert not any(token.startswith("-") for token in _query_of(url).split())


def test_exclusion_terms_and_negate():
    assert exclusion_terms("blurry, text  watermark") == ["blurry", "text", "watermark"]
    assert exclusion_terms(None) == []
    assert negate("cats", ["dogs", "-birds"]) == "cats -dogs -birds"
    assert negate("cats", []) == "cats"
