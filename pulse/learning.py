"""Online learning from explicit feedback.

Two kinds of state are written here and only here:

* per (user, mood, feature type, key) affinity scores, an EMA of a +1/-1
  signal with alpha 0.35;
* unit-norm mood centroids for a user and for everyone (``GLOBAL``), stepped
  toward liked article embeddings and away from disliked ones.

Concurrent updates to the same key are last-writer-wins.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Optional

from pulse.constants import (
    CENTROID_ALPHA_GLOBAL_POSITIVE,
    CENTROID_ALPHA_USER_NEGATIVE,
    CENTROID_ALPHA_USER_POSITIVE,
    EMBEDDING_MIN_CLIP,
    FEATURE_ALPHA,
    GLOBAL_SCOPE,
    TITLE_TOKEN_MAX_CHARS,
    TITLE_TOKEN_PATTERN,
)
from pulse.embeddings import Embedder
from pulse.interests import InterestMatcher, article_text
from pulse.logging_config import get_logger
from pulse.models import (
    Candidate,
    Feature,
    FeatureAffinity,
    FeedbackAction,
    FeedbackEvent,
    MoodCentroid,
)
from pulse.moods import normalize_mood
from pulse.storage import ArticleStore, FeedbackStore
from pulse.vectors import is_usable, normalize, norm

logger = get_logger(__name__)

_TITLE_TOKEN_RE = re.compile(TITLE_TOKEN_PATTERN)

Profile = dict[str, dict[str, float]]


def parse_action(action: str | FeedbackAction) -> Optional[FeedbackAction]:
    if isinstance(action, FeedbackAction):
        return action
    try:
        return FeedbackAction(str(action).strip())
    except ValueError:
        return None


def is_positive(action: str | FeedbackAction) -> bool:
    """Known positive actions only; unknown strings count as negative."""
    parsed = parse_action(action)
    return parsed is not None and parsed.is_positive


def norm_key(value: str | None) -> str:
    return (value or "").strip().lower()


def title_tokens(title: str | None) -> list[str]:
    return [
        m.group(0)
        for m in _TITLE_TOKEN_RE.finditer((title or "").lower())
        if len(m.group(0)) <= TITLE_TOKEN_MAX_CHARS
    ]


def extract_features(article: Candidate, interest_ids: Sequence[str] | None = None) -> list[Feature]:
    """Learnable features of an article; the ranking side looks up the same keys."""
    interests = article.interest_matches if interest_ids is None else interest_ids
    raw: list[tuple[str, str | None]] = [("source", article.source_id)]
    raw += [("interest", i) for i in interests]
    raw += [("tag", t) for t in article.tags]
    raw += [("tok", t) for t in title_tokens(article.title)]
    raw += [("genre", article.genre), ("event", article.event_stage), ("format", article.format)]

    features: list[Feature] = []
    for type_, key in raw:
        t, k = norm_key(type_), norm_key(key)
        if t and k:
            features.append(Feature(t, k))
    return features


def ema(old: float, signal: float, alpha: float = FEATURE_ALPHA) -> float:
    target = max(-1.0, min(1.0, signal))
    return max(-1.0, min(1.0, (1.0 - alpha) * old + alpha * target))


def update_centroid(
    current: Optional[Sequence[float]],
    sample: Sequence[float],
    toward: bool,
    alpha: float,
) -> list[float]:
    """One EMA step of a unit centroid toward (or away from) a unit sample.

    No prior vector, or one of another dimension, adopts the sample. A step
    away that collapses the vector to ~0 keeps the previous centroid, and so
    does a zero or non-finite sample (an empty list when there is none).
    """
    if not is_usable(sample):
        return list(current) if current else []
    sample_unit = normalize(sample)
    if not current or len(current) != len(sample_unit):
        return sample_unit
    if toward:
        stepped = [c * (1.0 - alpha) + s * alpha for c, s in zip(current, sample_unit)]
    else:
        stepped = [c - s * alpha for c, s in zip(current, sample_unit)]
    if norm(stepped) <= EMBEDDING_MIN_CLIP:
        return list(current)
    return normalize(stepped)


class FeedbackLearner:
    def __init__(
        self,
        store: FeedbackStore,
        articles: ArticleStore,
        matcher: InterestMatcher | None = None,
        embedder: Embedder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.articles = articles
        self.matcher = matcher
        self.embedder = embedder
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def record_feedback(
        self,
        user_id: str,
        article_id: str,
        mood: str | None,
        action: str | FeedbackAction,
    ) -> Optional[FeedbackEvent]:
        """Log the event, then update feature affinities and centroids."""
        if not article_id or not article_id.strip():
            return None
        article = await self.articles.get_by_id(article_id)
        if article is None:
            logger.info("feedback_article_missing", user=user_id, article_id=article_id)
            return None

        mood_name = normalize_mood(mood)
        parsed = parse_action(action)
        action_name = parsed.value if parsed else str(action)
        positive = is_positive(action)
        now = self._clock()

        event = FeedbackEvent(
            id=uuid.uuid4().hex,
            user_id=user_id,
            article_id=article_id,
            mood=mood_name,
            action=action_name,
            created_at=now,
        )
        await self.store.append_event(event)

        interest_ids = article.interest_matches
        if not interest_ids and self.matcher is not None:
            interest_ids = await self.matcher.match_article(article)
        features = extract_features(article, interest_ids)
        await self.record_signal(user_id, mood_name, features, 1.0 if positive else -1.0)

        vector = article.embedding
        if not vector and self.matcher is not None:
            vector = await self.matcher.article_vector(article)
        if not vector and self.embedder is not None:
            vector = await self.embedder.embed(article_text(article))
        usable = is_usable(vector)
        if usable:
            await self.update_centroids(user_id, mood_name, vector, positive)

        logger.info(
            "feedback_recorded",
            user=user_id,
            article_id=article_id,
            mood=mood_name,
            action=action_name,
            positive=positive,
            features=len(features),
            centroid=usable,
        )
        return event

    async def record_signal(
        self, user_id: str, mood: str, features: Sequence[Feature], signal: float
    ) -> None:
        mood_key = norm_key(mood)
        now = self._clock()
        for f in features:
            t, k = norm_key(f.type), norm_key(f.key)
            if not t or not k:
                continue
            current = await self.store.get_affinity(user_id, mood_key, t, k)
            old = current.score if current else 0.0
            count = current.count if current else 0
            await self.store.set_affinity(
                FeatureAffinity(
                    user_id=user_id,
                    mood=mood_key,
                    type=t,
                    key=k,
                    score=ema(old, signal),
                    count=count + 1,
                    updated_at=now,
                )
            )

    async def update_centroids(
        self, user_id: str, mood: str, vector: Sequence[float], positive: bool
    ) -> None:
        alpha = CENTROID_ALPHA_USER_POSITIVE if positive else CENTROID_ALPHA_USER_NEGATIVE
        await self._step_centroid(user_id, mood, vector, positive, alpha)
        if positive:
            await self._step_centroid(GLOBAL_SCOPE, mood, vector, True, CENTROID_ALPHA_GLOBAL_POSITIVE)

    async def _step_centroid(
        self, scope: str, mood: str, vector: Sequence[float], toward: bool, alpha: float
    ) -> None:
        current = await self.store.get_centroid(scope, mood)
        updated = update_centroid(current.vector if current else None, vector, toward, alpha)
        if not updated:
            return
        await self.store.set_centroid(
            MoodCentroid(
                scope=scope,
                mood=mood,
                vector=updated,
                count=(current.count if current else 0) + 1,
                updated_at=self._clock(),
            )
        )

    async def get_profile(self, user_id: str, mood: str | None) -> Profile:
        """Affinity scores as ``{type: {key: score}}`` for one (user, mood)."""
        profile: Profile = {}
        for a in await self.store.list_affinities(user_id, norm_key(normalize_mood(mood))):
            if a.type and a.key:
                profile.setdefault(a.type, {})[a.key] = a.score
        return profile

    async def get_centroids(
        self, user_id: str, mood: str | None
    ) -> tuple[Optional[list[float]], Optional[list[float]]]:
        mood_name = normalize_mood(mood)
        user = await self.store.get_centroid(user_id, mood_name)
        glob = await self.store.get_centroid(GLOBAL_SCOPE, mood_name)
        return (
            normalize(user.vector) if user and is_usable(user.vector) else None,
            normalize(glob.vector) if glob and is_usable(glob.vector) else None,
        )
