"""Hourly global snapshots and the per-user read path.

Generation (scheduled, one cycle at a time):
    window -> clusters -> heuristic score -> optional reranker -> diversity
    -> trend labels -> full-replace write of (date, hour)

Reads never call the reranker. Early in an hour they fall back to the
latest non-empty prior hour; later, an empty hour is generated on demand
with heuristics only.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from pulse.candidates import build_clusters, fetch_window
from pulse.config import Settings
from pulse.constants import (
    ARTICLE_QUERY_LIMIT,
    MIN_HEURISTIC_POOL,
    RERANKER_MIN_WINDOW,
    RERANKER_TOP_K_MIN,
)
from pulse.diversity import diversify_items
from pulse.embeddings import Embedder
from pulse.errors import PulseError, StoreUnavailableError
from pulse.interests import InterestMatcher
from pulse.learning import FeedbackLearner
from pulse.logging_config import get_logger
from pulse.models import (
    Candidate,
    FeedbackAction,
    FeedbackEvent,
    PulseToday,
    RankedItem,
    Snapshot,
    TimelineHour,
)
from pulse.moods import mood_lookback
from pulse.personalize import PersonalContext, compute_personal, dedupe_items, personal_target
from pulse.reranker import Reranker, rerank_items
from pulse.scoring import heuristic_items, score_clusters
from pulse.storage import (
    ArticleStore,
    FeedbackStore,
    MoodStore,
    SavedStore,
    SnapshotStore,
    UserStore,
    gather_chunked,
)
from pulse.trends import label_trends

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def date_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")


@dataclass
class HourView:
    """The snapshot a read resolved to, plus the day's stored hours."""

    date: str
    hour: int
    snapshot: Snapshot
    hours: list[tuple[int, Snapshot]] = field(default_factory=list)


class PulseService:
    def __init__(
        self,
        articles: ArticleStore,
        snapshots: SnapshotStore,
        settings: Settings | None = None,
        feedback: FeedbackStore | None = None,
        users: UserStore | None = None,
        moods: MoodStore | None = None,
        saved: SavedStore | None = None,
        reranker: Reranker | None = None,
        embedder: Embedder | None = None,
        matcher: InterestMatcher | None = None,
        learner: FeedbackLearner | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.articles = articles
        self.snapshots = snapshots
        self.settings = settings or Settings()
        self.users = users
        self.moods = moods
        self.saved = saved
        self.reranker = reranker
        self.matcher = matcher
        self.clock = clock or _utcnow
        self.rng = rng or random.Random()
        self.learner = learner or (
            FeedbackLearner(feedback, articles, matcher=matcher, embedder=embedder, clock=self.clock)
            if feedback is not None
            else None
        )
        self._generate_lock = asyncio.Lock()
        self._last_good: Optional[HourView] = None
        self._background: set[asyncio.Task] = set()

    def now_local(self) -> datetime:
        return self.clock().astimezone(self.settings.tz)

    # ---------- generation ----------

    async def generate_hour(
        self,
        heuristics_only: bool = False,
        only_if_missing: bool = False,
        hour: Optional[int] = None,
        take: Optional[int] = None,
    ) -> Optional[Snapshot]:
        """Build and store the snapshot for ``hour`` of today (default: the current hour).

        Returns None when ``only_if_missing`` is set and the hour already exists.
        """
        async with self._generate_lock:
            now_local = self.now_local()
            target_hour = now_local.hour if hour is None else max(0, min(23, hour))
            date = date_key(now_local)
            if only_if_missing and await self.snapshots.exists(date, target_hour):
                logger.debug("snapshot_exists", date=date, hour=target_hour)
                return None

            start = now_local.replace(hour=0, minute=0, second=0, microsecond=0)
            end = now_local
            if hour is not None:
                end = min(now_local, start + timedelta(hours=target_hour + 1))

            snapshot = await self._build_snapshot(
                date, target_hour, start, end, heuristics_only, take or self.settings.take
            )
            await self.snapshots.set(date, target_hour, snapshot)
            logger.info(
                "snapshot_generated",
                date=date,
                hour=target_hour,
                items=len(snapshot.items),
                heuristics_only=heuristics_only,
            )
            return snapshot

    async def _build_snapshot(
        self,
        date: str,
        hour: int,
        start: datetime,
        end: datetime,
        heuristics_only: bool,
        take: int,
    ) -> Snapshot:
        s = self.settings
        articles = await fetch_window(
            self.articles, start.astimezone(timezone.utc), end.astimezone(timezone.utc), ARTICLE_QUERY_LIMIT
        )
        if not articles:
            logger.info("candidate_window_empty", date=date, hour=hour)
            return Snapshot(date=date, hour=hour, updated_at=self.clock(), items=[])

        now = self.clock()
        scored = score_clusters(build_clusters(articles), now, s)
        window = scored[: s.reranker_max_candidates]
        count = min(len(window), max(s.store_count, 2 * take, MIN_HEURISTIC_POOL))

        items: Optional[list[RankedItem]] = None
        use_reranker = (
            not heuristics_only
            and s.reranker_enabled
            and self.reranker is not None
            and len(window) >= RERANKER_MIN_WINDOW
        )
        if use_reranker:
            top_k = max(RERANKER_TOP_K_MIN, min(s.reranker_top_k, max(RERANKER_TOP_K_MIN, take)))
            items = await rerank_items(self.reranker, window, top_k, count)
        if items is None:
            items = heuristic_items(window, count)

        selected = diversify_items(items, s.store_count, s.per_source_cap, s.per_bucket_cap)
        previous = await self._previous_snapshot(date, hour)
        return Snapshot(date=date, hour=hour, updated_at=self.clock(), items=label_trends(selected, previous))

    async def _previous_snapshot(self, date: str, hour: int) -> Optional[Snapshot]:
        if hour > 0:
            return await self.snapshots.get(date, hour - 1)
        prev_day = datetime.strptime(date, "%Y-%m-%d") - timedelta(days=1)
        return await self.snapshots.get(date_key(prev_day), 23)

    # ---------- reads ----------

    async def _current_view(self, take: int) -> HourView:
        now_local = self.now_local()
        date, hour, minute = date_key(now_local), now_local.hour, now_local.minute
        try:
            current = await self.snapshots.get(date, hour)
            hours = await self.snapshots.list_hours(date)
            if current is None or not current.items:
                if minute < self.settings.warmup_minutes:
                    prior = next((snap for h, snap in reversed(hours) if h < hour and snap.items), None)
                    if prior is not None:
                        current = prior
                elif minute >= self.settings.on_demand_after_minutes:
                    await self.generate_hour(
                        heuristics_only=True, only_if_missing=True, take=max(take, MIN_HEURISTIC_POOL)
                    )
                    fresh = await self.snapshots.get(date, hour)
                    if fresh is not None:
                        current = fresh
                        hours = await self.snapshots.list_hours(date)
        except StoreUnavailableError as e:
            if self._last_good is None:
                raise
            logger.warning("snapshot_read_failed_serving_last_good", error=str(e))
            return self._last_good

        view = HourView(
            date=date,
            hour=hour,
            snapshot=current or Snapshot(date=date, hour=hour, updated_at=self.clock(), items=[]),
            hours=hours,
        )
        if view.snapshot.items:
            self._last_good = view
        return view

    async def get_global(self, take: Optional[int] = None, date: Optional[str] = None) -> list[RankedItem]:
        take = take or self.settings.take
        if date is None or date == date_key(self.now_local()):
            view = await self._current_view(take)
            return view.snapshot.items[:take]
        for _, snap in reversed(await self.snapshots.list_hours(date)):
            if snap.items:
                return snap.items[:take]
        return []

    async def get_personal(
        self,
        user_id: str,
        mood: Optional[str] = None,
        blend: Optional[float] = None,
        take: Optional[int] = None,
    ) -> list[RankedItem]:
        today = await self.get_today(take=take, user_id=user_id, mood=mood, blend=blend)
        return today.personal_items

    async def get_today(
        self,
        take: Optional[int] = None,
        user_id: Optional[str] = None,
        mood: Optional[str] = None,
        blend: Optional[float] = None,
    ) -> PulseToday:
        take = take or self.settings.take
        view = await self._current_view(take)
        global_items = view.snapshot.items[:take]
        personal_items: list[RankedItem] = []

        if user_id:
            personal_items = await self._personal(view, global_items, user_id, mood, blend, take)
            saved = await self._saved_ids(user_id, [i.article_id for i in global_items + personal_items])
            global_items = [replace(i, saved=i.article_id in saved) for i in global_items]
            personal_items = [replace(i, saved=i.article_id in saved) for i in personal_items]

        return PulseToday(
            date=view.date,
            current_hour=view.hour,
            updated_at=view.snapshot.updated_at,
            global_items=global_items,
            personal_items=personal_items,
            timeline=[TimelineHour(hour=h, count=len(s.items), updated_at=s.updated_at) for h, s in view.hours],
        )

    async def _personal(
        self,
        view: HourView,
        global_items: Sequence[RankedItem],
        user_id: str,
        mood: Optional[str],
        blend: Optional[float],
        take: int,
    ) -> list[RankedItem]:
        setting = await self.moods.get_mood(user_id) if self.moods is not None else None
        eff_mood = mood if mood is not None else (setting.mood if setting else None)
        eff_blend = blend if blend is not None else (setting.blend if setting else self.settings.default_blend)
        eff_blend = max(0.0, min(1.0, eff_blend))

        target = personal_target(take)
        lookback = mood_lookback(eff_mood, eff_blend, self.settings.lookback_overrides)
        first_hour = max(0, view.hour - lookback + 1)
        recent = sorted(
            ((h, s) for h, s in view.hours if first_hour <= h <= view.hour),
            key=lambda p: p[0],
            reverse=True,
        )
        pool = dedupe_items(it for _, s in recent for it in s.items if it.article_id)
        if len(pool) < target * 2:
            pool = dedupe_items(view.snapshot.items)
        if not pool:
            return []

        ctx = PersonalContext(
            now=self.clock(),
            interests=await self.users.get_interest_names(user_id) if self.users is not None else [],
            mood=eff_mood,
            blend=eff_blend,
            articles=await self._articles_for(pool),
        )
        if eff_mood and self.learner is not None:
            ctx.profile = await self.learner.get_profile(user_id, eff_mood)
            ctx.user_centroid, ctx.global_centroid = await self.learner.get_centroids(user_id, eff_mood)

        personal = compute_personal(
            pool,
            ctx,
            target,
            self.settings,
            exclude={g.article_id for g in global_items},
            rng=self.rng,
        )
        logger.debug("personal_computed", user=user_id, pool=len(pool), items=len(personal), mood=eff_mood)
        return personal

    async def _articles_for(self, items: Sequence[RankedItem]) -> dict[str, Candidate]:
        found = await gather_chunked(self.articles.get_by_ids, [i.article_id for i in items])
        by_id: dict[str, Candidate] = {}
        for a in found:
            if not a.interest_matches and self.matcher is not None:
                # Document vectors are cached by the matcher; keep them for the vector boost
                if not a.embedding:
                    vec = await self.matcher.article_vector(a)
                    if vec:
                        a = replace(a, embedding=vec)
                a = replace(a, interest_matches=await self.matcher.match_article(a))
            by_id[a.id] = a
        return by_id

    async def _saved_ids(self, user_id: str, article_ids: Sequence[str]) -> set[str]:
        if self.saved is None:
            return set()

        async def fetch(chunk: list[str]) -> set[str]:
            return await self.saved.saved_among(user_id, chunk)

        return set(await gather_chunked(fetch, article_ids))

    # ---------- feedback ----------

    async def record_feedback(
        self,
        user_id: str,
        article_id: str,
        mood: Optional[str],
        action: str | FeedbackAction,
    ) -> Optional[FeedbackEvent]:
        if self.learner is None:
            raise PulseError("feedback store not configured")
        return await self.learner.record_feedback(user_id, article_id, mood, action)

    def submit_feedback(
        self,
        user_id: str,
        article_id: str,
        mood: Optional[str],
        action: str | FeedbackAction,
    ) -> asyncio.Task:
        """Record feedback in the background; the caller does not wait for it."""
        task = asyncio.create_task(self.record_feedback(user_id, article_id, mood, action))
        self._background.add(task)
        task.add_done_callback(self._feedback_done)
        return task

    def _feedback_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("feedback_failed", error=repr(exc))

    async def drain(self) -> None:
        """Wait for outstanding background feedback tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
