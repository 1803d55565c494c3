import asyncio

import pytest

from article_studio.errors import (
    FatalProviderError,
    ParseError,
    TransientProviderError,
)
from article_studio.retry import RetryPolicy, is_transient


class Flaky:
    """Fail the first ``failures`` calls with ``error_factory()``, then succeed."""

    def __init__(self, failures, error_factory=lambda: TransientProviderError(429, "slow down")):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return "ok"


def _policy(delays, max_retries=3):
    async def fake_sleep(seconds):
        delays.append(seconds)

    return RetryPolicy(max_retries=max_retries, base_delay=2.0, sleep=fake_sleep)


@pytest.mark.parametrize("failures", [0, 1, 2, 3])
def test_succeeds_after_transient_failures_within_budget(failures):
    delays = []
    op = Flaky(failures)

    result = asyncio.run(_policy(delays).call(op))

    assert result == "ok"
    assert op.calls == failures + 1
    assert len(delays) == failures


def test_backoff_doubles_from_base_delay():
    delays = []
    op = Flaky(3, lambda: TransientProviderError(503, "unavailable"))

    asyncio.run(_policy(delays).call(op))

    assert delays == [2.0, 4.0, 8.0]


def test_reraises_last_transient_error_when_budget_is_spent():
    delays = []
    op = Flaky(10)

    with pytest.raises(TransientProviderError) as excinfo:
        asyncio.run(_policy(delays).call(op))

    assert excinfo.value.status == 429
    assert op.calls == 4
    assert delays == [2.0, 4.0, 8.0]


@pytest.mark.parametrize(
    "error_factory",
    [
        lambda: FatalProviderError(401, "bad key"),
        lambda: FatalProviderError(None, "connection refused"),
        lambda: ParseError("not json"),
    ],
)
def test_non_transient_errors_are_not_retried(error_factory):
    delays = []
    op = Flaky(1, error_factory)

    with pytest.raises(type(error_factory())):
        asyncio.run(_policy(delays).call(op))

    assert op.calls == 1
    assert delays == []


def test_zero_retries_means_single_attempt():
    delays = []
    op = Flaky(1)

    with pytest.raises(TransientProviderError):
        asyncio.run(_policy(delays, max_retries=0).call(op))

    assert op.calls == 1


def test_is_transient_reads_status_attribute():
    assert is_transient(TransientProviderError(429, "x"))
    assert is_transient(TransientProviderError(503, "x"))
    assert not is_transient(FatalProviderError(500, "x"))
    assert not is_transient(ValueError("x"))
