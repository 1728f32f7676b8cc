"""Typed data models for Pulse ranking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, TypedDict

from pulse.constants import TREND_STEADY


def _parse_dt(value: object) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        dt = datetime.fromtimestamp(0, tz=timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _opt_float(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class RankedItemDict(TypedDict):
    """Serialized RankedItem payload for snapshot storage."""

    article_id: str
    score_global: float
    heat: float
    trend: str
    reasons: list[str]
    cluster_id: Optional[str]
    title: str
    source_id: Optional[str]
    published_at: str
    summary: Optional[str]
    image_url: Optional[str]
    topics: list[str]


class SnapshotDict(TypedDict):
    date: str
    hour: int
    updated_at: str
    items: list[RankedItemDict]


@dataclass
class Candidate:
    """An ingested article with its precomputed signals."""

    id: str
    url: str
    title: str
    source_id: Optional[str]
    published_at: datetime
    created_at: Optional[datetime] = None
    summary: Optional[str] = None
    image_url: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    interest_matches: list[str] = field(default_factory=list)
    arousal: Optional[float] = None
    sentiment: Optional[float] = None
    depth: Optional[float] = None
    conflict: Optional[float] = None
    practicality: Optional[float] = None
    optimism: Optional[float] = None
    novelty: Optional[float] = None
    human_interest: Optional[float] = None
    hype: Optional[float] = None
    explainer: Optional[float] = None
    analysis: Optional[float] = None
    wholesome: Optional[float] = None
    read_minutes: Optional[int] = None
    genre: Optional[str] = None  # Explainer|Analysis|Report|Profile|HowTo|Q&A|List|Recap
    event_stage: Optional[str] = None  # Breaking|Update|Launch|Aftermath|Feature
    format: Optional[str] = None  # Short|Standard|Longform|Visual
    embedding: Optional[list[float]] = None

    @classmethod
    def from_dict(cls, d: dict) -> Candidate:
        """Create Candidate from a stored article document."""
        read_minutes = d.get("read_minutes")
        embedding = d.get("embedding")
        return cls(
            id=str(d.get("id", "")),
            url=str(d.get("url") or ""),
            title=str(d.get("title") or ""),
            source_id=d.get("source_id"),
            published_at=_parse_dt(d.get("published_at")),
            created_at=_parse_dt(d["created_at"]) if d.get("created_at") else None,
            summary=d.get("summary"),
            image_url=d.get("image_url"),
            tags=[str(t) for t in d.get("tags") or []],
            topics=[str(t) for t in d.get("topics") or []],
            interest_matches=[str(t) for t in d.get("interest_matches") or []],
            arousal=_opt_float(d.get("arousal")),
            sentiment=_opt_float(d.get("sentiment")),
            depth=_opt_float(d.get("depth")),
            conflict=_opt_float(d.get("conflict")),
            practicality=_opt_float(d.get("practicality")),
            optimism=_opt_float(d.get("optimism")),
            novelty=_opt_float(d.get("novelty")),
            human_interest=_opt_float(d.get("human_interest")),
            hype=_opt_float(d.get("hype")),
            explainer=_opt_float(d.get("explainer")),
            analysis=_opt_float(d.get("analysis")),
            wholesome=_opt_float(d.get("wholesome")),
            read_minutes=int(read_minutes) if read_minutes is not None else None,
            genre=d.get("genre"),
            event_stage=d.get("event_stage"),
            format=d.get("format"),
            embedding=[float(x) for x in embedding] if embedding else None,
        )

    def to_dict(self) -> dict:
        """Serialize to a plain document."""
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "source_id": self.source_id,
            "published_at": self.published_at.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "summary": self.summary,
            "image_url": self.image_url,
            "tags": self.tags,
            "topics": self.topics,
            "interest_matches": self.interest_matches,
            "arousal": self.arousal,
            "sentiment": self.sentiment,
            "depth": self.depth,
            "conflict": self.conflict,
            "practicality": self.practicality,
            "optimism": self.optimism,
            "novelty": self.novelty,
            "human_interest": self.human_interest,
            "hype": self.hype,
            "explainer": self.explainer,
            "analysis": self.analysis,
            "wholesome": self.wholesome,
            "read_minutes": self.read_minutes,
            "genre": self.genre,
            "event_stage": self.event_stage,
            "format": self.format,
            "embedding": self.embedding,
        }


@dataclass
class Cluster:
    """Articles sharing a canonical URL, with their chosen representative."""

    key: str
    representative: Candidate
    size: int  # Distinct sources in the cluster


@dataclass
class ScoredCandidate:
    """Heuristic importance result for one cluster representative."""

    cluster_id: str
    candidate: Candidate
    raw: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class RankedItem:
    """One entry of an hourly snapshot (or of a personal list)."""

    article_id: str
    score_global: float
    heat: float
    title: str
    source_id: Optional[str]
    published_at: datetime
    trend: str = TREND_STEADY
    reasons: list[str] = field(default_factory=list)
    cluster_id: Optional[str] = None
    summary: Optional[str] = None
    image_url: Optional[str] = None
    topics: list[str] = field(default_factory=list)
    # Read-path only; never stored in a snapshot
    score_personal: Optional[float] = None
    saved: bool = False

    @classmethod
    def from_dict(cls, d: RankedItemDict) -> RankedItem:
        return cls(
            article_id=str(d.get("article_id", "")),
            score_global=float(d.get("score_global", 0.0)),
            heat=float(d.get("heat", 0.0)),
            trend=str(d.get("trend") or TREND_STEADY),
            reasons=list(d.get("reasons") or []),
            cluster_id=d.get("cluster_id"),
            title=str(d.get("title") or ""),
            source_id=d.get("source_id"),
            published_at=_parse_dt(d.get("published_at")),
            summary=d.get("summary"),
            image_url=d.get("image_url"),
            topics=list(d.get("topics") or []),
        )

    def to_dict(self) -> RankedItemDict:
        return {
            "article_id": self.article_id,
            "score_global": self.score_global,
            "heat": self.heat,
            "trend": self.trend,
            "reasons": self.reasons,
            "cluster_id": self.cluster_id,
            "title": self.title,
            "source_id": self.source_id,
            "published_at": self.published_at.isoformat(),
            "summary": self.summary,
            "image_url": self.image_url,
            "topics": self.topics,
        }


@dataclass
class Snapshot:
    """Ranked list for one (date, hour) bucket."""

    date: str  # YYYY-MM-DD, local to the configured timezone
    hour: int
    updated_at: datetime
    items: list[RankedItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: SnapshotDict) -> Snapshot:
        return cls(
            date=str(d["date"]),
            hour=int(d["hour"]),
            updated_at=_parse_dt(d.get("updated_at")),
            items=[RankedItem.from_dict(i) for i in d.get("items") or []],
        )

    def to_dict(self) -> SnapshotDict:
        return {
            "date": self.date,
            "hour": self.hour,
            "updated_at": self.updated_at.isoformat(),
            "items": [i.to_dict() for i in self.items],
        }


@dataclass
class TimelineHour:
    hour: int
    count: int
    updated_at: datetime


@dataclass
class PulseToday:
    """Result of a read: global list, optional personal list, day timeline."""

    date: str
    current_hour: int
    updated_at: datetime
    global_items: list[RankedItem]
    personal_items: list[RankedItem] = field(default_factory=list)
    timeline: list[TimelineHour] = field(default_factory=list)


@dataclass
class RerankInput:
    """Compact record sent to the reranking oracle."""

    id: str
    title: str
    source_id: str
    published_at: datetime
    summary: Optional[str]
    tags: list[str]


@dataclass
class RerankChoice:
    id: str
    score: float
    reasons: list[str] = field(default_factory=list)


class FeedbackAction(str, Enum):
    MORE_LIKE_THIS = "MoreLikeThis"
    GREAT_EXPLAINER = "GreatExplainer"
    MORE_LAUNCHES = "MoreLaunches"
    TOO_INTENSE = "TooIntense"
    TOO_FLUFFY = "TooFluffy"
    TOO_SHORT = "TooShort"
    NOT_RELEVANT = "NotRelevant"

    @property
    def is_positive(self) -> bool:
        return self in _POSITIVE_ACTIONS


_POSITIVE_ACTIONS = {
    FeedbackAction.MORE_LIKE_THIS,
    FeedbackAction.GREAT_EXPLAINER,
    FeedbackAction.MORE_LAUNCHES,
}


@dataclass(frozen=True)
class Feature:
    """Keyed feature extracted from an article."""

    type: str
    key: str


@dataclass
class FeedbackEvent:
    """Immutable feedback log entry."""

    id: str
    user_id: str
    article_id: str
    mood: str
    action: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "article_id": self.article_id,
            "mood": self.mood,
            "action": self.action,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> FeedbackEvent:
        return cls(
            id=str(d["id"]),
            user_id=str(d["user_id"]),
            article_id=str(d["article_id"]),
            mood=str(d["mood"]),
            action=str(d["action"]),
            created_at=_parse_dt(d.get("created_at")),
        )


@dataclass
class FeatureAffinity:
    """EMA score for one (user, mood, feature type, feature key)."""

    user_id: str
    mood: str
    type: str
    key: str
    score: float = 0.0  # -1..+1
    count: int = 0
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "mood": self.mood,
            "type": self.type,
            "key": self.key,
            "score": self.score,
            "count": self.count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> FeatureAffinity:
        return cls(
            user_id=str(d["user_id"]),
            mood=str(d["mood"]),
            type=str(d["type"]),
            key=str(d["key"]),
            score=float(d.get("score", 0.0)),
            count=int(d.get("count", 0)),
            updated_at=_parse_dt(d["updated_at"]) if d.get("updated_at") else None,
        )


@dataclass
class MoodCentroid:
    """Unit-norm running embedding for a (user or GLOBAL, mood) scope."""

    scope: str
    mood: str
    vector: list[float]
    count: int = 0
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "mood": self.mood,
            "vector": self.vector,
            "count": self.count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> MoodCentroid:
        return cls(
            scope=str(d["scope"]),
            mood=str(d["mood"]),
            vector=[float(x) for x in d.get("vector") or []],
            count=int(d.get("count", 0)),
            updated_at=_parse_dt(d["updated_at"]) if d.get("updated_at") else None,
        )


@dataclass
class MoodSetting:
    """A user's current mood dial (read-only to the engine)."""

    mood: Optional[str]
    blend: float  # 0 = comfort, 1 = challenge


@dataclass
class Interest:
    id: str
    name: str
