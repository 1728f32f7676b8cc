"""Storage contracts the ranking engine relies on, plus in-memory backends.

The engine never talks to a database directly. It needs:

* an article store (time-window query, lookup by id, batched lookup),
* a snapshot store keyed by (date, hour) with full-document replacement,
* a feedback store for the event log, feature affinities and centroids,
* small per-user lookups (interests, saved mood, saved articles).

Batched lookups go through :func:`gather_chunked`, which respects the
store's batch-size limit and issues the chunks concurrently.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Optional, Protocol, TypeVar

from pulse.constants import ARTICLE_QUERY_LIMIT, PROFILE_QUERY_LIMIT, STORE_BATCH_SIZE
from pulse.models import (
    Candidate,
    FeatureAffinity,
    FeedbackEvent,
    Interest,
    MoodCentroid,
    MoodSetting,
    Snapshot,
)

T = TypeVar("T")


class ArticleStore(Protocol):
    async def query_by_time_window(
        self, start: datetime, end: datetime, limit: int = ARTICLE_QUERY_LIMIT
    ) -> list[Candidate]: ...

    async def get_by_id(self, article_id: str) -> Optional[Candidate]: ...

    async def get_by_ids(self, article_ids: Sequence[str]) -> list[Candidate]: ...


class SnapshotStore(Protocol):
    async def get(self, date: str, hour: int) -> Optional[Snapshot]: ...

    async def set(self, date: str, hour: int, snapshot: Snapshot) -> None: ...

    async def list_hours(self, date: str) -> list[tuple[int, Snapshot]]: ...

    async def exists(self, date: str, hour: int) -> bool: ...


class FeedbackStore(Protocol):
    async def append_event(self, event: FeedbackEvent) -> None: ...

    async def list_events(self, user_id: str) -> list[FeedbackEvent]: ...

    async def get_affinity(
        self, user_id: str, mood: str, type_: str, key: str
    ) -> Optional[FeatureAffinity]: ...

    async def set_affinity(self, affinity: FeatureAffinity) -> None: ...

    async def list_affinities(
        self, user_id: str, mood: str, limit: int = PROFILE_QUERY_LIMIT
    ) -> list[FeatureAffinity]: ...

    async def get_centroid(self, scope: str, mood: str) -> Optional[MoodCentroid]: ...

    async def set_centroid(self, centroid: MoodCentroid) -> None: ...


class UserStore(Protocol):
    async def get_interest_names(self, user_id: str) -> list[str]: ...

    async def list_interests(self) -> list[Interest]: ...


class MoodStore(Protocol):
    async def get_mood(self, user_id: str) -> Optional[MoodSetting]: ...


class SavedStore(Protocol):
    async def saved_among(self, user_id: str, article_ids: Sequence[str]) -> set[str]: ...


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def gather_chunked(
    fetch: Callable[[list[str]], Awaitable[Iterable[T]]],
    ids: Iterable[str],
    chunk_size: int = STORE_BATCH_SIZE,
) -> list[T]:
    """Run ``fetch`` over de-duplicated ids in concurrent chunks and union the results."""
    unique = list(dict.fromkeys(i for i in ids if i))
    if not unique:
        return []
    results = await asyncio.gather(*(fetch(chunk) for chunk in chunked(unique, chunk_size)))
    merged: list[T] = []
    for part in results:
        merged.extend(part)
    return merged


def affinity_doc_id(user_id: str, mood: str, type_: str, key: str) -> str:
    return f"{user_id}|{mood}|{type_}|{key}"


def centroid_doc_id(scope: str, mood: str) -> str:
    return f"{scope}|{mood}"


class InMemoryArticleStore:
    """Article store over a dict; enforces the batched-lookup size limit."""

    def __init__(self, articles: Iterable[Candidate] = (), batch_limit: int = STORE_BATCH_SIZE) -> None:
        self._articles: dict[str, Candidate] = {a.id: a for a in articles}
        self.batch_limit = batch_limit
        self.batch_calls = 0

    def add(self, *articles: Candidate) -> None:
        for a in articles:
            self._articles[a.id] = a

    async def query_by_time_window(
        self, start: datetime, end: datetime, limit: int = ARTICLE_QUERY_LIMIT
    ) -> list[Candidate]:
        hits = [a for a in self._articles.values() if start <= a.published_at <= end]
        hits.sort(key=lambda a: a.published_at, reverse=True)
        return hits[:limit]

    async def get_by_id(self, article_id: str) -> Optional[Candidate]:
        return self._articles.get(article_id)

    async def get_by_ids(self, article_ids: Sequence[str]) -> list[Candidate]:
        if len(article_ids) > self.batch_limit:
            raise ValueError(f"batch of {len(article_ids)} exceeds limit {self.batch_limit}")
        self.batch_calls += 1
        return [self._articles[i] for i in article_ids if i in self._articles]


class InMemorySnapshotStore:
    """Snapshots kept as serialized documents so every write is a full replace."""

    def __init__(self) -> None:
        self._docs: dict[tuple[str, int], dict] = {}

    async def get(self, date: str, hour: int) -> Optional[Snapshot]:
        doc = self._docs.get((date, hour))
        return Snapshot.from_dict(copy.deepcopy(doc)) if doc is not None else None

    async def set(self, date: str, hour: int, snapshot: Snapshot) -> None:
        self._docs[(date, hour)] = copy.deepcopy(snapshot.to_dict())

    async def list_hours(self, date: str) -> list[tuple[int, Snapshot]]:
        hours = sorted(h for d, h in self._docs if d == date)
        return [(h, Snapshot.from_dict(copy.deepcopy(self._docs[(date, h)]))) for h in hours]

    async def exists(self, date: str, hour: int) -> bool:
        return (date, hour) in self._docs


class InMemoryFeedbackStore:
    def __init__(self) -> None:
        self.events: list[FeedbackEvent] = []
        self.affinities: dict[str, FeatureAffinity] = {}
        self.centroids: dict[str, MoodCentroid] = {}

    async def append_event(self, event: FeedbackEvent) -> None:
        self.events.append(event)

    async def list_events(self, user_id: str) -> list[FeedbackEvent]:
        return [e for e in self.events if e.user_id == user_id]

    async def get_affinity(
        self, user_id: str, mood: str, type_: str, key: str
    ) -> Optional[FeatureAffinity]:
        found = self.affinities.get(affinity_doc_id(user_id, mood, type_, key))
        return copy.copy(found) if found else None

    async def set_affinity(self, affinity: FeatureAffinity) -> None:
        doc_id = affinity_doc_id(affinity.user_id, affinity.mood, affinity.type, affinity.key)
        self.affinities[doc_id] = copy.copy(affinity)

    async def list_affinities(
        self, user_id: str, mood: str, limit: int = PROFILE_QUERY_LIMIT
    ) -> list[FeatureAffinity]:
        hits = [a for a in self.affinities.values() if a.user_id == user_id and a.mood == mood]
        return [copy.copy(a) for a in hits[:limit]]

    async def get_centroid(self, scope: str, mood: str) -> Optional[MoodCentroid]:
        found = self.centroids.get(centroid_doc_id(scope, mood))
        return copy.deepcopy(found) if found else None

    async def set_centroid(self, centroid: MoodCentroid) -> None:
        self.centroids[centroid_doc_id(centroid.scope, centroid.mood)] = copy.deepcopy(centroid)


class InMemoryUserStore:
    def __init__(
        self,
        interests: dict[str, list[str]] | None = None,
        catalog: Iterable[Interest] = (),
        moods: dict[str, MoodSetting] | None = None,
        saved: dict[str, set[str]] | None = None,
        batch_limit: int = STORE_BATCH_SIZE,
    ) -> None:
        self.interests = interests or {}
        self.catalog = list(catalog)
        self.moods = moods or {}
        self.saved = saved or {}
        self.batch_limit = batch_limit

    async def get_interest_names(self, user_id: str) -> list[str]:
        return list(self.interests.get(user_id, []))

    async def list_interests(self) -> list[Interest]:
        return list(self.catalog)

    async def get_mood(self, user_id: str) -> Optional[MoodSetting]:
        return self.moods.get(user_id)

    async def saved_among(self, user_id: str, article_ids: Sequence[str]) -> set[str]:
        if len(article_ids) > self.batch_limit:
            raise ValueError(f"batch of {len(article_ids)} exceeds limit {self.batch_limit}")
        return self.saved.get(user_id, set()) & set(article_ids)
