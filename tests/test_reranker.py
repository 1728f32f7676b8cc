import asyncio
import json
import random

import httpx
import pytest
import respx
from httpx import Response

from pulse.diversity import diversify_items
from pulse.errors import RerankerError
from pulse.models import RerankChoice, RerankInput, ScoredCandidate
from pulse.reranker import (
    OpenAIReranker,
    RetryPolicy,
    _parse_retry_after,
    merge_choices,
    parse_choices,
    rerank_items,
)
from conftest import NOW, make_article

BASE = "https://llm.test"
URL = f"{BASE}/v1/chat/completions"
FAST = RetryPolicy(base_delay=0.0, jitter_max=0.0)


def completion(content):
    return Response(200, json={"choices": [{"message": {"content": content}}]})


def inputs(n=3):
    return [
        RerankInput(id=str(i), title=f"T{i}", source_id="S", published_at=NOW, summary="x" * 500, tags=[])
        for i in range(n)
    ]


def window(n=12):
    return [
        ScoredCandidate(cluster_id=f"c{i}", candidate=make_article(str(i)), raw=float(n - i) / 100, reasons=["Very fresh"])
        for i in range(n)
    ]


GOOD = json.dumps({"top": [{"id": "2", "score": 0.9, "reasons": ["war"]}, {"id": "0", "score": 0.4}]})


@pytest.mark.asyncio
@respx.mock
async def test_rerank_success():
    route = respx.post(URL).mock(return_value=completion(GOOD))
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        choices = await rr.rerank(inputs(), top_k=5)
    assert [c.id for c in choices] == ["2", "0"]
    assert choices[0].reasons == ["war"]

    body = json.loads(route.calls[0].request.content)
    assert body["response_format"] == {"type": "json_object"}
    sent = json.loads(body["messages"][1]["content"])["items"]
    assert len(sent[0]["sum"]) == 320
    assert route.calls[0].request.headers["authorization"] == "Bearer key"


@pytest.mark.asyncio
@respx.mock
async def test_retries_500_then_succeeds():
    route = respx.post(URL).mock(side_effect=[Response(500), Response(503), completion(GOOD)])
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        choices = await rr.rerank(inputs(), top_k=5)
    assert route.call_count == 3
    assert len(choices) == 2


@pytest.mark.asyncio
@respx.mock
async def test_exhausted_retries_fall_back_to_empty():
    route = respx.post(URL).mock(return_value=Response(500))
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        assert await rr.rerank(inputs(), top_k=5) == []
    assert route.call_count == 3


@pytest.mark.asyncio
@respx.mock
async def test_429_honors_retry_after():
    route = respx.post(URL).mock(
        side_effect=[Response(429, headers={"Retry-After": "0"}), completion(GOOD)]
    )
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        choices = await rr.rerank(inputs(), top_k=5)
    assert route.call_count == 2
    assert choices


@pytest.mark.asyncio
@respx.mock
async def test_client_error_not_retried():
    route = respx.post(URL).mock(return_value=Response(400, text="bad request"))
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        assert await rr.rerank(inputs(), top_k=5) == []
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_timeout_is_immediate_fallback():
    route = respx.post(URL).mock(side_effect=httpx.ReadTimeout("slow"))
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        assert await rr.rerank(inputs(), top_k=5) == []
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_malformed_reply_falls_back():
    respx.post(URL).mock(return_value=completion("I think story 2 is best"))
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        assert await rr.rerank(inputs(), top_k=5) == []


@pytest.mark.asyncio
@respx.mock
async def test_malformed_envelope_falls_back():
    respx.post(URL).mock(return_value=Response(200, json={"nope": True}))
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        assert await rr.rerank(inputs(), top_k=5) == []


@pytest.mark.asyncio
async def test_empty_input_skips_call():
    async with OpenAIReranker("key", base_url=BASE, policy=FAST) as rr:
        assert await rr.rerank([], top_k=5) == []


def test_parse_choices_clamps_dedupes_and_limits():
    content = json.dumps(
        {
            "top": [
                {"id": "a", "score": 1.7, "reasons": ["1", "2", "3", "4"]},
                {"id": "a", "score": 0.1},
                {"id": 5, "score": "high"},
                {"score": 0.3},
                {"id": "c", "score": -2},
            ]
        }
    )
    choices = parse_choices(f"```json\n{content}\n```", top_k=10)
    assert [(c.id, c.score) for c in choices] == [("a", 1.0), ("5", 0.5), ("c", 0.0)]
    assert choices[0].reasons == ["1", "2", "3"]
    assert len(parse_choices(content, top_k=1)) == 1


def test_parse_choices_requires_top_list():
    with pytest.raises(RerankerError):
        parse_choices('{"items": []}', top_k=3)


def test_retry_policy_delays():
    policy = RetryPolicy()
    rng = random.Random(1)
    first = policy.delay(1, rng)
    assert 0.25 <= first <= 0.37
    assert 1.0 <= policy.delay(3, rng) <= 1.12
    assert RetryPolicy(jitter_max=0.0).delay(2) == 0.5


def test_parse_retry_after():
    assert _parse_retry_after("3") == 3.0
    assert _parse_retry_after("-1") == 0.0
    assert _parse_retry_after("") is None
    assert _parse_retry_after("garbage") is None
    assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


def test_merge_choices_backfills_from_heuristic_order():
    win = window(8)
    merged = merge_choices(win, [RerankChoice("5", 0.9, ["war"]), RerankChoice("zz", 0.8)], top_k=4)
    assert [s.candidate.id for s, _, _ in merged] == ["5", "0", "1", "2"]
    assert merged[0][1] == 0.9
    assert merged[0][2] == ["Very fresh", "war"]
    assert merged[1][1] == win[0].raw


class StubReranker:
    def __init__(self, result=None, exc=None):
        self.result = result or []
        self.exc = exc

    async def rerank(self, items, top_k):
        if self.exc is not None:
            raise self.exc
        return self.result


@pytest.mark.asyncio
async def test_rerank_items_oracle_leads_and_list_keeps_size():
    win = window(12)
    items = await rerank_items(StubReranker([RerankChoice("7", 0.95)]), win, top_k=6, count=12)
    assert len(items) == 12
    assert items[0].article_id == "7"
    assert items[0].heat == 1.0
    assert [i.article_id for i in items[1:6]] == ["0", "1", "2", "3", "4"]
    assert all(i.heat == 0.0 for i in items[6:])
    assert len({i.article_id for i in items}) == 12


@pytest.mark.asyncio
async def test_rerank_items_signals_fallback():
    assert await rerank_items(StubReranker([]), window(), top_k=6, count=12) is None
    assert await rerank_items(StubReranker(exc=RuntimeError("boom")), window(), top_k=6, count=12) is None


@pytest.mark.asyncio
async def test_rerank_items_does_not_swallow_cancellation():
    with pytest.raises(asyncio.CancelledError):
        await rerank_items(StubReranker(exc=asyncio.CancelledError()), window(), top_k=6, count=12)


@pytest.mark.asyncio
async def test_heat_mixes_oracle_and_raw_scales():
    # Raw scores well above the 0..1 oracle range.
    win = [
        ScoredCandidate(cluster_id=f"c{i}", candidate=make_article(str(i)), raw=float(12 - i))
        for i in range(12)
    ]
    items = await rerank_items(StubReranker([RerankChoice("7", 0.95)]), win, top_k=6, count=12)
    assert items[0].article_id == "7"
    assert items[0].heat == 0.0
    assert items[1].article_id == "0"
    assert items[1].heat == 1.0

    stored = diversify_items(items, 12, per_source_cap=12, per_bucket_cap=12)
    assert [i.article_id for i in stored[:5]] == ["0", "1", "2", "3", "4"]
    assert stored.index(next(i for i in stored if i.article_id == "7")) > 0
