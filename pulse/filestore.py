"""JSON-file backends for the storage protocols.

Layout under the data directory::

    articles.json                  {article_id: article document}
    snapshots/YYYY-MM-DD.json      {"date": ..., "hours": {"13": snapshot}}
    feedback/events.json           [event, ...]
    feedback/affinities.json       {user|mood|type|key: affinity}
    feedback/centroids.json        {scope|mood: centroid}
    users.json                     {"interests", "catalog", "moods", "saved"}

Every write replaces a whole file through a temp file + rename, so readers
see either the old or the new document. Snapshot day files beyond the
retention limit are evicted oldest first.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pulse.cache_utils import atomic_write_json, evict_old_files, read_json
from pulse.constants import ARTICLE_QUERY_LIMIT, PROFILE_QUERY_LIMIT, SNAPSHOT_MAX_FILES, STORE_BATCH_SIZE
from pulse.errors import StoreUnavailableError
from pulse.logging_config import get_logger
from pulse.models import (
    Candidate,
    FeatureAffinity,
    FeedbackEvent,
    Interest,
    MoodCentroid,
    MoodSetting,
    Snapshot,
)
from pulse.storage import affinity_doc_id, centroid_doc_id

logger = get_logger(__name__)


def _write(path: Path, data: Any) -> None:
    try:
        atomic_write_json(path, data)
    except OSError as e:
        raise StoreUnavailableError(f"cannot write {path}: {e}") from e


class JsonArticleStore:
    def __init__(self, root: Path, batch_limit: int = STORE_BATCH_SIZE) -> None:
        self.path = Path(root) / "articles.json"
        self.batch_limit = batch_limit
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, dict]:
        data = read_json(self.path, {})
        return data if isinstance(data, dict) else {}

    async def add(self, articles: Iterable[Candidate]) -> int:
        async with self._lock:
            docs = self._load()
            added = 0
            for a in articles:
                docs[a.id] = a.to_dict()
                added += 1
            _write(self.path, docs)
        return added

    async def query_by_time_window(
        self, start: datetime, end: datetime, limit: int = ARTICLE_QUERY_LIMIT
    ) -> list[Candidate]:
        hits = [Candidate.from_dict(d) for d in self._load().values()]
        hits = [a for a in hits if start <= a.published_at <= end]
        hits.sort(key=lambda a: a.published_at, reverse=True)
        return hits[:limit]

    async def get_by_id(self, article_id: str) -> Optional[Candidate]:
        doc = self._load().get(article_id)
        return Candidate.from_dict(doc) if doc else None

    async def get_by_ids(self, article_ids: Sequence[str]) -> list[Candidate]:
        if len(article_ids) > self.batch_limit:
            raise ValueError(f"batch of {len(article_ids)} exceeds limit {self.batch_limit}")
        docs = self._load()
        return [Candidate.from_dict(docs[i]) for i in article_ids if i in docs]


class JsonSnapshotStore:
    """One JSON document per local date holding that day's hourly snapshots."""

    def __init__(self, root: Path, max_files: int = SNAPSHOT_MAX_FILES) -> None:
        self.dir = Path(root) / "snapshots"
        self.max_files = max_files
        self._lock = asyncio.Lock()

    def _day_path(self, date: str) -> Path:
        return self.dir / f"{date}.json"

    def _load_day(self, date: str) -> dict:
        data = read_json(self._day_path(date), {})
        if not isinstance(data, dict) or not isinstance(data.get("hours"), dict):
            return {"date": date, "hours": {}}
        return data

    async def get(self, date: str, hour: int) -> Optional[Snapshot]:
        doc = self._load_day(date)["hours"].get(str(hour))
        return Snapshot.from_dict(doc) if doc else None

    async def set(self, date: str, hour: int, snapshot: Snapshot) -> None:
        async with self._lock:
            day = self._load_day(date)
            day["hours"][str(hour)] = snapshot.to_dict()
            _write(self._day_path(date), day)
            removed = evict_old_files(self.dir, "*.json", self.max_files)
        if removed:
            logger.info("snapshot_files_evicted", count=len(removed))

    async def list_hours(self, date: str) -> list[tuple[int, Snapshot]]:
        hours = self._load_day(date)["hours"]
        return [(int(h), Snapshot.from_dict(hours[h])) for h in sorted(hours, key=int)]

    async def exists(self, date: str, hour: int) -> bool:
        return str(hour) in self._load_day(date)["hours"]


class JsonFeedbackStore:
    def __init__(self, root: Path) -> None:
        self.dir = Path(root) / "feedback"
        self.events_path = self.dir / "events.json"
        self.affinities_path = self.dir / "affinities.json"
        self.centroids_path = self.dir / "centroids.json"
        self._lock = asyncio.Lock()

    def _load_dict(self, path: Path) -> dict[str, dict]:
        data = read_json(path, {})
        return data if isinstance(data, dict) else {}

    async def append_event(self, event: FeedbackEvent) -> None:
        async with self._lock:
            events = read_json(self.events_path, [])
            if not isinstance(events, list):
                events = []
            events.append(event.to_dict())
            _write(self.events_path, events)

    async def list_events(self, user_id: str) -> list[FeedbackEvent]:
        events = read_json(self.events_path, [])
        return [FeedbackEvent.from_dict(e) for e in events or [] if e.get("user_id") == user_id]

    async def get_affinity(
        self, user_id: str, mood: str, type_: str, key: str
    ) -> Optional[FeatureAffinity]:
        doc = self._load_dict(self.affinities_path).get(affinity_doc_id(user_id, mood, type_, key))
        return FeatureAffinity.from_dict(doc) if doc else None

    async def set_affinity(self, affinity: FeatureAffinity) -> None:
        async with self._lock:
            docs = self._load_dict(self.affinities_path)
            doc_id = affinity_doc_id(affinity.user_id, affinity.mood, affinity.type, affinity.key)
            docs[doc_id] = affinity.to_dict()
            _write(self.affinities_path, docs)

    async def list_affinities(
        self, user_id: str, mood: str, limit: int = PROFILE_QUERY_LIMIT
    ) -> list[FeatureAffinity]:
        docs = self._load_dict(self.affinities_path).values()
        hits = [FeatureAffinity.from_dict(d) for d in docs if d.get("user_id") == user_id and d.get("mood") == mood]
        return hits[:limit]

    async def get_centroid(self, scope: str, mood: str) -> Optional[MoodCentroid]:
        doc = self._load_dict(self.centroids_path).get(centroid_doc_id(scope, mood))
        return MoodCentroid.from_dict(doc) if doc else None

    async def set_centroid(self, centroid: MoodCentroid) -> None:
        async with self._lock:
            docs = self._load_dict(self.centroids_path)
            docs[centroid_doc_id(centroid.scope, centroid.mood)] = centroid.to_dict()
            _write(self.centroids_path, docs)


class JsonUserStore:
    """Interests, saved mood and saved articles per user, from one users.json."""

    def __init__(self, root: Path, batch_limit: int = STORE_BATCH_SIZE) -> None:
        self.path = Path(root) / "users.json"
        self.batch_limit = batch_limit

    def _load(self) -> dict:
        data = read_json(self.path, {})
        return data if isinstance(data, dict) else {}

    async def get_interest_names(self, user_id: str) -> list[str]:
        names = self._load().get("interests", {}).get(user_id, [])
        return [str(n).strip() for n in names if str(n).strip()]

    async def list_interests(self) -> list[Interest]:
        return [
            Interest(id=str(d["id"]), name=str(d["name"]))
            for d in self._load().get("catalog", [])
            if isinstance(d, dict) and d.get("id") and d.get("name")
        ]

    async def get_mood(self, user_id: str) -> Optional[MoodSetting]:
        doc = self._load().get("moods", {}).get(user_id)
        if not isinstance(doc, dict):
            return None
        try:
            blend = float(doc.get("blend", 0.3))
        except (TypeError, ValueError):
            blend = 0.3
        return MoodSetting(mood=doc.get("mood"), blend=blend)

    async def saved_among(self, user_id: str, article_ids: Sequence[str]) -> set[str]:
        if len(article_ids) > self.batch_limit:
            raise ValueError(f"batch of {len(article_ids)} exceeds limit {self.batch_limit}")
        saved = set(self._load().get("saved", {}).get(user_id, []))
        return saved & set(article_ids)
