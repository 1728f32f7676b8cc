"""Per-user overlay on top of the hourly global snapshots.

For every pooled item:

    base      = minmax(0.7 * max(score_global, heat) + 0.3 * recency)
    personal  = base * (1 + W_interest * overlap + W_mood * (mood - 0.5))
    personal *= age damping, off-mood penalty, global-overlap penalty
    personal += learned affinity + vector boost
    personal *= per-id jitter (0.995..1.005)

Items are then drawn by softmax sampling without replacement from the top of
the pool, under per-source / per-bucket caps, with a backfill pass that
raises bucket diversity and a final plain fill to the target.
"""

from __future__ import annotations

import hashlib
import math
import random
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from pulse.config import Settings
from pulse.constants import (
    AGE_DAMP_BASE,
    AGE_DAMP_HOURS,
    AGE_DAMP_SWING,
    GLOBAL_OVERLAP_HEAT,
    GLOBAL_OVERLAP_MOOD,
    JITTER_MIN,
    JITTER_SPAN,
    LEARNED_MAX_BOOST,
    LEARNED_SUM_CLAMP,
    LEARNED_TANH_SCALE,
    MAX_REASONS,
    MOOD_NEUTRAL,
    OFF_MOOD_PENALTY_CHALLENGE,
    OFF_MOOD_PENALTY_COMFORT,
    OFF_MOOD_THRESHOLD,
    PERSONAL_BASE_RAW_WEIGHT,
    PERSONAL_BASE_RECENCY_WEIGHT,
    PERSONAL_MIN_SCORE,
    PERSONAL_RECENCY_MIN_HOURS,
    PERSONAL_SAMPLE_POOL_FACTOR,
    PERSONAL_SAMPLE_POOL_MIN,
    PERSONAL_TARGET_MAX,
    PERSONAL_TARGET_MIN,
    PERSONAL_TARGET_OFFSET,
    PERSONAL_TEMPERATURE,
    REASON_MOOD_SCORE,
    REASON_TOPICS_OVERLAP,
    REASON_VIBE_SIMILARITY,
    RECENCY_EXP,
    VECTOR_WEIGHT_GLOBAL,
    VECTOR_WEIGHT_USER,
    W_INTEREST_BASE,
    W_INTEREST_SWING,
    W_MOOD_BASE,
    W_MOOD_SWING,
)
from pulse.diversity import CapCounter, coarse_bucket, source_key
from pulse.learning import Profile, extract_features
from pulse.logging_config import get_logger
from pulse.models import Candidate, Feature, RankedItem
from pulse.moods import MoodTuning, apply_tone
from pulse.scoring import hours_since, min_max
from pulse.vectors import cosine

logger = get_logger(__name__)

REASON_TOPICS = "Matches your topics"
REASON_VIBE = "Matches your vibe history"

_WORD_RE = re.compile(r"[a-z0-9+#]{3,}")


def personal_target(take: int) -> int:
    return max(PERSONAL_TARGET_MIN, min(PERSONAL_TARGET_MAX, take - PERSONAL_TARGET_OFFSET))


def interest_tokens(names: Iterable[str]) -> set[str]:
    """Lower-cased interest names plus the words of multi-word names."""
    out: set[str] = set()
    for name in names:
        n = (name or "").strip().lower()
        if not n:
            continue
        out.add(n)
        words = _WORD_RE.findall(n)
        if len(words) > 1:
            out.update(words)
    return out


def topic_overlap(topics: Sequence[str], tokens: set[str]) -> float:
    cleaned = [t.strip().lower() for t in topics if t and t.strip()]
    if not cleaned:
        return 0.0
    return sum(1 for t in cleaned if t in tokens) / len(cleaned)


def item_features(item: RankedItem, article: Optional[Candidate]) -> list[Feature]:
    """Same feature keys the learner writes, read from the stored article when available."""
    if article is None:
        article = Candidate(
            id=item.article_id,
            url="",
            title=item.title,
            source_id=item.source_id,
            published_at=item.published_at,
            tags=list(item.topics),
        )
    elif not article.tags:
        article = replace(article, tags=list(item.topics))
    return extract_features(article)


def learned_affinity(profile: Profile, features: Iterable[Feature]) -> float:
    total = sum(profile.get(f.type, {}).get(f.key, 0.0) for f in features)
    total = max(-LEARNED_SUM_CLAMP, min(LEARNED_SUM_CLAMP, total))
    return LEARNED_MAX_BOOST * math.tanh(total / LEARNED_TANH_SCALE)


def vector_boost(
    embedding: Optional[Sequence[float]],
    user_centroid: Optional[Sequence[float]],
    global_centroid: Optional[Sequence[float]],
) -> tuple[float, float]:
    """(boost, user cosine); a missing vector on either side contributes nothing."""
    cos_user = cosine(embedding, user_centroid) or 0.0
    cos_global = cosine(embedding, global_centroid) or 0.0
    boost = VECTOR_WEIGHT_USER * max(0.0, cos_user) + VECTOR_WEIGHT_GLOBAL * max(0.0, cos_global)
    return boost, cos_user


def jitter(article_id: str) -> float:
    """Stable tie-breaker in [0.995, 1.005) derived from the id."""
    digest = hashlib.md5(article_id.encode("utf-8")).digest()
    return JITTER_MIN + JITTER_SPAN * (int.from_bytes(digest[:4], "big") % 100) / 100.0


def merge_reasons(
    base: Sequence[str],
    overlap: float,
    mood: Optional[str],
    mood_score: float,
    user_cosine: float = 0.0,
) -> list[str]:
    reasons = list(base)
    if overlap > REASON_TOPICS_OVERLAP:
        reasons.append(REASON_TOPICS)
    if mood and mood_score > REASON_MOOD_SCORE:
        reasons.append(f"Tuned for {mood}")
    if user_cosine > REASON_VIBE_SIMILARITY:
        reasons.append(REASON_VIBE)
    return list(dict.fromkeys(reasons))[:MAX_REASONS]


@dataclass
class PersonalContext:
    """Everything known about the reader for one request."""

    now: datetime
    interests: list[str] = field(default_factory=list)
    mood: Optional[str] = None
    blend: float = 0.3
    profile: Profile = field(default_factory=dict)
    user_centroid: Optional[list[float]] = None
    global_centroid: Optional[list[float]] = None
    articles: dict[str, Candidate] = field(default_factory=dict)


@dataclass
class PersonalCandidate:
    item: RankedItem
    score: float
    base: float
    mood_score: float
    overlap: float
    reasons: list[str]
    bucket: str
    source: str


def score_pool(
    pool: Sequence[RankedItem],
    ctx: PersonalContext,
    min_delta_from_global: float,
) -> list[PersonalCandidate]:
    if not pool:
        return []
    tuning = MoodTuning(ctx.mood, ctx.blend)
    blend = tuning.blend
    tokens = interest_tokens(ctx.interests)

    hours = [hours_since(i.published_at, ctx.now, PERSONAL_RECENCY_MIN_HOURS) for i in pool]
    blended = [
        PERSONAL_BASE_RAW_WEIGHT * max(i.score_global, i.heat)
        + PERSONAL_BASE_RECENCY_WEIGHT / math.pow(h, RECENCY_EXP)
        for i, h in zip(pool, hours)
    ]
    bases = min_max(blended)

    w_mood = W_MOOD_BASE + (blend - 0.5) * W_MOOD_SWING
    w_interest = W_INTEREST_BASE + (0.5 - blend) * W_INTEREST_SWING
    age_damp = AGE_DAMP_BASE - blend * AGE_DAMP_SWING
    off_mood_cap = OFF_MOOD_PENALTY_COMFORT if blend <= 0.5 else OFF_MOOD_PENALTY_CHALLENGE

    scored: list[PersonalCandidate] = []
    for item, base, h in zip(pool, bases, hours):
        article = ctx.articles.get(item.article_id)
        overlap = topic_overlap(item.topics, tokens)
        mood_score = tuning.score(
            item.title,
            item.summary,
            item.topics,
            item.published_at,
            ctx.now,
            arousal=article.arousal if article else None,
        )

        personal = base * (1.0 + w_interest * overlap + w_mood * (mood_score - MOOD_NEUTRAL))
        if h > AGE_DAMP_HOURS:
            personal *= age_damp
        if mood_score < OFF_MOOD_THRESHOLD:
            personal *= 1.0 - min(off_mood_cap, OFF_MOOD_THRESHOLD - mood_score)
        if item.heat >= GLOBAL_OVERLAP_HEAT and mood_score < GLOBAL_OVERLAP_MOOD:
            personal *= 1.0 - min_delta_from_global

        user_cos = 0.0
        if tuning.enabled:
            personal += learned_affinity(ctx.profile, item_features(item, article))
            boost, user_cos = vector_boost(
                article.embedding if article else None, ctx.user_centroid, ctx.global_centroid
            )
            personal += boost

        personal *= jitter(item.article_id)
        scored.append(
            PersonalCandidate(
                item=item,
                score=max(PERSONAL_MIN_SCORE, personal),
                base=base,
                mood_score=mood_score,
                overlap=overlap,
                reasons=merge_reasons(
                    item.reasons, overlap, tuning.mood if tuning.enabled else None, mood_score, user_cos
                ),
                bucket=coarse_bucket(item.topics),
                source=source_key(item.source_id),
            )
        )
    return scored


def _softmax(scores: Sequence[float], temperature: float) -> list[float]:
    t = max(1e-6, temperature)
    top = max(scores)
    exps = [math.exp((s - top) / t) for s in scores]
    total = sum(exps)
    return [e / total for e in exps]


def _draw(probs: Sequence[float], rng: random.Random) -> int:
    r = rng.random()
    cum = 0.0
    for idx, p in enumerate(probs):
        cum += p
        if r <= cum:
            return idx
    return len(probs) - 1


def sample_weighted(
    scored: Sequence[PersonalCandidate],
    k: int,
    per_source_cap: int,
    per_bucket_cap: int,
    min_buckets: int,
    rng: random.Random,
    temperature: float = PERSONAL_TEMPERATURE,
) -> list[PersonalCandidate]:
    """Softmax draw without replacement; never returns more than ``k`` or a duplicate id."""
    if k <= 0 or not scored:
        return []
    pool = sorted(scored, key=lambda c: c.score, reverse=True)
    pool = pool[: max(k * PERSONAL_SAMPLE_POOL_FACTOR, PERSONAL_SAMPLE_POOL_MIN)]

    counter = CapCounter(per_source_cap, per_bucket_cap)
    chosen: list[PersonalCandidate] = []
    chosen_ids: set[str] = set()

    active = list(pool)
    probs = _softmax([c.score for c in active], temperature)
    while len(chosen) < k and active:
        idx = _draw(probs, rng)
        cand = active.pop(idx)
        probs.pop(idx)
        if cand.item.article_id not in chosen_ids and counter.allows(cand.source, cand.bucket):
            chosen.append(cand)
            chosen_ids.add(cand.item.article_id)
            counter.add(cand.source, cand.bucket)
        total = sum(probs)
        if total <= 1e-12:
            break
        probs = [p / total for p in probs]

    buckets = {c.bucket for c in chosen}
    if len(buckets) < min_buckets:
        for cand in pool:
            if len(buckets) >= min_buckets:
                break
            if cand.item.article_id in chosen_ids or cand.bucket in buckets:
                continue
            if counter.by_source.get(cand.source, 0) >= per_source_cap:
                continue
            if len(chosen) >= k:
                # Full: give up the weakest item whose bucket is already doubled up
                dupes = [c for c in chosen if counter.by_bucket.get(c.bucket, 0) > 1]
                if not dupes:
                    break
                weakest = min(dupes, key=lambda c: c.score)
                chosen.remove(weakest)
                chosen_ids.discard(weakest.item.article_id)
                counter.by_source[weakest.source] -= 1
                counter.by_bucket[weakest.bucket] -= 1
            chosen.append(cand)
            chosen_ids.add(cand.item.article_id)
            counter.add(cand.source, cand.bucket)
            buckets.add(cand.bucket)

    for cand in pool:
        if len(chosen) >= k:
            break
        if cand.item.article_id not in chosen_ids:
            chosen.append(cand)
            chosen_ids.add(cand.item.article_id)
    return chosen


def dedupe_items(items: Iterable[RankedItem]) -> list[RankedItem]:
    """First occurrence of each article id, order kept."""
    seen: set[str] = set()
    out: list[RankedItem] = []
    for it in items:
        if it.article_id not in seen:
            seen.add(it.article_id)
            out.append(it)
    return out


def compute_personal(
    pool: Sequence[RankedItem],
    ctx: PersonalContext,
    target: int,
    settings: Settings,
    exclude: Optional[set[str]] = None,
    rng: Optional[random.Random] = None,
) -> list[RankedItem]:
    """The personal list for one reader, distinct from Global where the pool allows."""
    unique = dedupe_items(pool)
    exclude = exclude or set()
    remaining = [i for i in unique if i.article_id not in exclude]
    if exclude and len(remaining) < max(3, target // 2):
        # Early in the day the pool is thin; overlap with Global beats an empty list
        logger.info("personal_exclusion_dropped", remaining=len(remaining), target=target)
        remaining = unique
    if not remaining:
        return []

    scored = score_pool(remaining, ctx, settings.personal_min_delta_from_global)
    selected = sample_weighted(
        scored,
        target,
        settings.personal_per_source_cap,
        settings.personal_per_bucket_cap,
        settings.personal_min_buckets,
        rng or random.Random(),
    )
    if not selected:
        return []

    tone_mood = MoodTuning(ctx.mood, ctx.blend)
    mood_label = tone_mood.mood if tone_mood.enabled else None
    normalized = min_max([c.score for c in selected])
    return [
        replace(
            c.item,
            summary=apply_tone(c.item.summary, mood_label) or c.item.summary,
            reasons=c.reasons,
            score_personal=score,
        )
        for c, score in zip(selected, normalized)
    ]
