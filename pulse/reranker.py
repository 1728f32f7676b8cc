"""Optional importance reranking through an OpenAI-compatible chat endpoint.

The oracle is a fail-soft dependency: every failure mode (HTTP error,
timeout, malformed reply, exhausted retries) ends in an empty result and the
caller keeps its heuristic order. Only HTTP 429/5xx are retried. Caller
cancellation is never swallowed.
"""

from __future__ import annotations

import json
import random
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Protocol

import httpx
from aiolimiter import AsyncLimiter
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from pulse.constants import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_USER_AGENT,
    HTTP_WRITE_TIMEOUT,
    MAX_REASONS,
    RERANKER_BASE_URL,
    RERANKER_DEFAULT_SCORE,
    RERANKER_MAX_REASONS,
    RERANKER_MAX_TAGS,
    RERANKER_MIN_SCORE,
    RERANKER_MODEL,
    RERANKER_RATE_LIMIT,
    RERANKER_SUMMARY_MAX_CHARS,
    RERANKER_TIMEOUT_SECONDS,
    RERANKER_TITLE_MAX_CHARS,
    RETRY_AFTER_MAX,
    RETRY_BACKOFF_FACTOR,
    RETRY_BASE_DELAY,
    RETRY_JITTER_MAX,
    RETRY_MAX_ATTEMPTS,
)
from pulse.errors import RerankerError, RerankerRetryableError
from pulse.llm_utils import build_payload, safe_json_loads
from pulse.logging_config import get_logger
from pulse.models import RankedItem, RerankChoice, RerankInput, ScoredCandidate
from pulse.scoring import min_max, to_ranked_item

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a front-page editor. Rank the MOST important stories for a general audience TODAY. "
    "Prioritize: policy/geopolitics, major corporate actions, disasters, war/ceasefire, security, "
    "macro/markets, public health. Deprioritize: deals/discounts, product reviews, shopping guides, "
    "minor app updates, gossip. Prefer stories corroborated by reputable outlets and with wider impact. "
    'Return strict JSON: {{"top":[{{"id":"...","score":0..1,"reasons":["..."]}}]}} '
    "Limit to top {top_k}. Keep scores monotonic (desc)."
)


class Reranker(Protocol):
    async def rerank(self, items: Sequence[RerankInput], top_k: int) -> list[RerankChoice]: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Jittered exponential backoff for retryable oracle failures."""

    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY
    factor: float = RETRY_BACKOFF_FACTOR
    jitter_max: float = RETRY_JITTER_MAX
    retry_after_max: float = RETRY_AFTER_MAX

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Wait after the given failed attempt (1-based): 250ms, 500ms, 1s... plus jitter."""
        jitter = (rng or random).uniform(0.0, self.jitter_max) if self.jitter_max > 0 else 0.0
        return self.base_delay * (self.factor ** max(0, attempt - 1)) + jitter

    def wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RerankerRetryableError) and exc.cooldown is not None:
            return min(self.retry_after_max, max(0.0, exc.cooldown))
        return self.delay(retry_state.attempt_number)

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            retry=retry_if_exception_type(RerankerRetryableError),
            wait=self.wait,
            reraise=True,
        )


def _parse_retry_after(value: str) -> float | None:
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(dt.tzinfo)).total_seconds())


def _retry_after_seconds(resp: httpx.Response) -> float | None:
    header = resp.headers.get("retry-after")
    return _parse_retry_after(header) if header else None


def _trim(text: str | None, limit: int) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]


def compact_inputs(items: Sequence[RerankInput]) -> list[dict[str, object]]:
    return [
        {
            "id": i.id,
            "t": _trim(i.title, RERANKER_TITLE_MAX_CHARS),
            "s": i.source_id,
            "p": i.published_at.astimezone(timezone.utc).isoformat(),
            "sum": _trim(i.summary, RERANKER_SUMMARY_MAX_CHARS),
            "tags": list(i.tags[:RERANKER_MAX_TAGS]),
        }
        for i in items
    ]


def parse_choices(content: str | None, top_k: int) -> list[RerankChoice]:
    """Read ``{"top": [{id, score, reasons}]}``; raises RerankerError when the shape is wrong."""
    data = safe_json_loads(content)
    top = data.get("top")
    if not isinstance(top, list):
        raise RerankerError("malformed reranker reply: missing 'top' list")

    choices: list[RerankChoice] = []
    seen: set[str] = set()
    for el in top:
        if not isinstance(el, dict):
            continue
        raw_id = el.get("id")
        cid = str(raw_id).strip() if isinstance(raw_id, (str, int)) else ""
        if not cid or cid in seen:
            continue
        seen.add(cid)
        score = RERANKER_DEFAULT_SCORE
        raw_score = el.get("score")
        if isinstance(raw_score, (int, float)) and not isinstance(raw_score, bool):
            score = min(1.0, max(0.0, float(raw_score)))
        reasons_raw = el.get("reasons")
        reasons = (
            [r.strip() for r in reasons_raw if isinstance(r, str) and r.strip()][:RERANKER_MAX_REASONS]
            if isinstance(reasons_raw, list)
            else []
        )
        choices.append(RerankChoice(id=cid, score=score, reasons=reasons))
        if len(choices) >= top_k:
            break
    return choices


class OpenAIReranker:
    """Importance oracle backed by ``/v1/chat/completions`` (JSON mode)."""

    def __init__(
        self,
        api_key: str,
        model: str = RERANKER_MODEL,
        base_url: str = RERANKER_BASE_URL,
        timeout_seconds: float = RERANKER_TIMEOUT_SECONDS,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()
        self._api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=HTTP_CONNECT_TIMEOUT,
                read=timeout_seconds,
                write=HTTP_WRITE_TIMEOUT,
                pool=HTTP_POOL_TIMEOUT,
            )
        )
        self.limiter = limiter or AsyncLimiter(RERANKER_RATE_LIMIT, 60)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> OpenAIReranker:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def rerank(self, items: Sequence[RerankInput], top_k: int) -> list[RerankChoice]:
        if not items or top_k <= 0:
            return []

        payload = build_payload(
            model=self.model,
            system=SYSTEM_PROMPT.format(top_k=top_k),
            user=json.dumps({"items": compact_inputs(items)}),
            json_mode=True,
        )

        try:
            async for attempt in self.policy.retrying():
                with attempt:
                    content = await self._post(payload)
            return parse_choices(content, top_k)
        except RerankerError as e:
            logger.warning("reranker_fallback", reason=str(e), items=len(items))
            return []

    async def _post(self, payload: dict[str, object]) -> Optional[str]:
        try:
            async with self.limiter:
                resp = await self.client.post(
                    f"{self.base_url}/v1/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                        "User-Agent": HTTP_USER_AGENT,
                    },
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise RerankerError(f"reranker timed out: {e!r}") from e
        except httpx.HTTPError as e:
            raise RerankerError(f"reranker transport error: {e!r}") from e

        status = resp.status_code
        if status == 429 or 500 <= status < 600:
            logger.warning("reranker_retryable_status", status=status)
            raise RerankerRetryableError(
                f"reranker HTTP {status}", cooldown=_retry_after_seconds(resp)
            )
        if status != 200:
            raise RerankerError(f"reranker HTTP {status}: {resp.text[:200]}")

        try:
            data = resp.json()
            return data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise RerankerError(f"malformed completion envelope: {e!r}") from e


def to_rerank_input(scored: ScoredCandidate) -> RerankInput:
    a = scored.candidate
    return RerankInput(
        id=a.id,
        title=a.title,
        source_id=a.source_id or "source",
        published_at=a.published_at,
        summary=a.summary,
        tags=list(a.tags[:RERANKER_MAX_TAGS]),
    )


def merge_choices(
    window: Sequence[ScoredCandidate],
    choices: Sequence[RerankChoice],
    top_k: int,
) -> list[tuple[ScoredCandidate, float, list[str]]]:
    """Oracle picks first, then heuristic backfill up to ``top_k`` (keeping raw scores)."""
    by_id = {s.candidate.id: s for s in window}
    chosen: list[tuple[ScoredCandidate, float, list[str]]] = []
    picked: set[str] = set()
    for ch in choices:
        s = by_id.get(ch.id)
        if s is None or ch.id in picked:
            continue
        picked.add(ch.id)
        reasons = list(dict.fromkeys(s.reasons + ch.reasons))[:MAX_REASONS]
        chosen.append((s, max(RERANKER_MIN_SCORE, ch.score), reasons))

    if not chosen:
        return []

    needed = min(top_k, len(window)) - len(chosen)
    for s in window:
        if needed <= 0:
            break
        if s.candidate.id in picked:
            continue
        picked.add(s.candidate.id)
        chosen.append((s, s.raw, list(s.reasons)))
        needed -= 1
    return chosen


async def rerank_items(
    reranker: Reranker,
    window: Sequence[ScoredCandidate],
    top_k: int,
    count: int,
) -> Optional[list[RankedItem]]:
    """Ranked items led by the oracle's picks, or None to signal heuristic fallback."""
    try:
        choices = await reranker.rerank([to_rerank_input(s) for s in window], top_k)
    except Exception as e:
        logger.warning("reranker_fallback", reason=repr(e), items=len(window))
        return None

    chosen = merge_choices(window, choices, top_k)
    if not chosen:
        logger.info("reranker_empty", items=len(window))
        return None

    heats = min_max([score for _, score, _ in chosen])
    items = [to_ranked_item(s, score, heat, reasons) for (s, score, reasons), heat in zip(chosen, heats)]
    picked = {item.article_id for item in items}
    rest = [s for s in window if s.candidate.id not in picked][: max(0, count - len(items))]
    items.extend(to_ranked_item(s, s.raw, 0.0) for s in rest)
    return items
