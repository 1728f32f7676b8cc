"""Heuristic importance scoring for cluster representatives.

raw = recency * 1.1 + log10(1 + distinct sources) * 0.7 + arousal * 0.25
raw *= 1.25 for tier-1 sources
raw += keyword / pattern event boost

The score only orders candidates within one cycle; it has no absolute
meaning. ``heat`` is its min-max normalization over the ranked window.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from datetime import datetime

from pulse.config import Settings
from pulse.constants import (
    AROUSAL_WEIGHT,
    BOOST_KEYWORD_DELTA,
    CASUALTY_PATTERN_DELTA,
    CORROBORATION_WEIGHT,
    DEFAULT_AROUSAL,
    ITEM_TOPICS_FROM_TAGS,
    ITEM_TOPICS_MAX,
    LEGAL_PATTERN_DELTA,
    PENALTY_KEYWORD_DELTA,
    RECENCY_EXP,
    RECENCY_MIN_HOURS,
    RECENCY_WEIGHT,
    TIER1_AUTHORITY,
    TOPIC_KEYWORDS,
    VERY_FRESH_HOURS,
)
from pulse.models import Cluster, RankedItem, ScoredCandidate

CASUALTY_RE = re.compile(r"\b(\d+)\s+(dead|killed|injured)\b")
LEGAL_RE = re.compile(r"\b(ban|verdict|ruling|fine|sanction|tariff|indictment)\b")
_FALLBACK_TOPIC_RE = re.compile(r"\b[a-z0-9+#]{4,}\b")

REASON_MULTI_SOURCE = "Multi-source"
REASON_TIER1 = "Tier-1 source"
REASON_KEYWORDS = "High-impact keywords"
REASON_FRESH = "Very fresh"


def hours_since(published_at: datetime, now: datetime, floor: float = RECENCY_MIN_HOURS) -> float:
    return max(floor, (now - published_at).total_seconds() / 3600.0)


def recency_factor(
    published_at: datetime,
    now: datetime,
    floor: float = RECENCY_MIN_HOURS,
    exp: float = RECENCY_EXP,
) -> float:
    return 1.0 / math.pow(hours_since(published_at, now, floor), exp)


def source_authority(source_id: str | None, tier1: Iterable[str]) -> float:
    if not source_id or not source_id.strip():
        return 1.0
    wanted = source_id.strip().lower()
    return TIER1_AUTHORITY if any(wanted == s.strip().lower() for s in tier1) else 1.0


def event_boost(
    title: str,
    summary: str | None,
    tags: Sequence[str],
    boost_keywords: Sequence[str],
    penalty_keywords: Sequence[str],
) -> float:
    hay = f"{title} {summary or ''} {' '.join(tags)}".lower()
    boost = 0.0
    for kw in boost_keywords:
        if kw and kw in hay:
            boost += BOOST_KEYWORD_DELTA
    for kw in penalty_keywords:
        if kw and kw in hay:
            boost += PENALTY_KEYWORD_DELTA
    if CASUALTY_RE.search(hay):
        boost += CASUALTY_PATTERN_DELTA
    if LEGAL_RE.search(hay):
        boost += LEGAL_PATTERN_DELTA
    return boost


def score_cluster(cluster: Cluster, now: datetime, settings: Settings) -> ScoredCandidate:
    a = cluster.representative
    hours = hours_since(a.published_at, now)
    recency = 1.0 / math.pow(hours, RECENCY_EXP)
    corroboration = math.log10(1 + max(1, cluster.size))
    arousal = a.arousal if a.arousal is not None and math.isfinite(a.arousal) else DEFAULT_AROUSAL
    authority = source_authority(a.source_id, settings.tier1_sources)
    boost = event_boost(a.title, a.summary, a.tags, settings.boost_keywords, settings.penalty_keywords)

    raw = (recency * RECENCY_WEIGHT) + (corroboration * CORROBORATION_WEIGHT) + (arousal * AROUSAL_WEIGHT)
    raw = raw * authority + boost

    reasons: list[str] = []
    if cluster.size >= 2:
        reasons.append(REASON_MULTI_SOURCE)
    if authority > 1.0:
        reasons.append(REASON_TIER1)
    if boost > 0.2:
        reasons.append(REASON_KEYWORDS)
    if hours < VERY_FRESH_HOURS:
        reasons.append(REASON_FRESH)

    return ScoredCandidate(cluster_id=cluster.key, candidate=a, raw=raw, reasons=reasons)


def score_clusters(clusters: Iterable[Cluster], now: datetime, settings: Settings) -> list[ScoredCandidate]:
    """Score every representative, best first (stable for equal scores)."""
    scored = [score_cluster(c, now, settings) for c in clusters]
    scored.sort(key=lambda s: s.raw, reverse=True)
    return scored


def min_max(values: Sequence[float]) -> list[float]:
    if not values:
        return []
    lo, hi = min(values), max(values)
    span = max(1e-6, hi - lo)
    return [min(1.0, max(0.0, (v - lo) / span)) for v in values]


def extract_topics(title: str | None, summary: str | None) -> list[str]:
    text = f"{title or ''} {summary or ''}".lower()
    topics: list[str] = []
    for token, topic in TOPIC_KEYWORDS:
        if token in text and topic not in topics:
            topics.append(topic)
    if topics:
        return topics
    for match in _FALLBACK_TOPIC_RE.finditer(text):
        if len(topics) >= ITEM_TOPICS_FROM_TAGS:
            break
        if match.group(0) not in topics:
            topics.append(match.group(0))
    return topics


def normalize_topics(topics: Iterable[str]) -> list[str]:
    out: list[str] = []
    for t in topics:
        t = (t or "").strip().lower()
        if t and t not in out:
            out.append(t)
        if len(out) >= ITEM_TOPICS_MAX:
            break
    return out


def item_topics(scored: ScoredCandidate) -> list[str]:
    a = scored.candidate
    topics = list((a.tags or a.topics)[:ITEM_TOPICS_FROM_TAGS])
    if not topics:
        topics = extract_topics(a.title, a.summary)
    return normalize_topics(topics)


def to_ranked_item(
    scored: ScoredCandidate,
    score: float,
    heat: float,
    reasons: list[str] | None = None,
) -> RankedItem:
    a = scored.candidate
    return RankedItem(
        article_id=a.id,
        score_global=score,
        heat=min(1.0, max(0.0, heat)),
        title=a.title,
        source_id=a.source_id,
        published_at=a.published_at,
        reasons=list(reasons if reasons is not None else scored.reasons),
        cluster_id=scored.cluster_id,
        summary=a.summary,
        image_url=a.image_url,
        topics=item_topics(scored),
    )


def heuristic_items(window: Sequence[ScoredCandidate], count: int) -> list[RankedItem]:
    """Top ``count`` of the window with heat normalized across the whole window."""
    if not window:
        return []
    heats = min_max([s.raw for s in window])
    ranked = sorted(zip(window, heats), key=lambda p: p[0].raw, reverse=True)[:count]
    return [to_ranked_item(s, s.raw, h) for s, h in ranked]
