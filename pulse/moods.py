"""Mood archetypes and the mood-fit score used by the personal overlay.

Every archetype is a row in ``MOOD_PROFILES``: the keywords it likes,
whether explainers or live/breaking stories count as a hit, a recency band
bonus, its default lookback and the tone prefix for summaries. Adding a
mood means adding a row.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pulse.constants import (
    AROUSAL_FIT_WEIGHT,
    AROUSAL_TARGET_CHALLENGE,
    AROUSAL_TARGET_COMFORT,
    LOOKBACK_MAX_HOURS,
    LOOKBACK_MIN_HOURS,
    MOOD_AFFINITY_SCALE,
    MOOD_BLEND_RECENCY_BASE,
    MOOD_BLEND_RECENCY_CAP,
    MOOD_BLEND_RECENCY_SWING,
    MOOD_NEUTRAL,
    MOOD_RECENCY_EXP,
    PERSONAL_RECENCY_MIN_HOURS,
)

EXPLAINER_RE = re.compile(r"\b(what is|why|how|explainer|q&a|faq|guide|analysis|deep dive)\b")
LIVE_RE = re.compile(r"\b(live|breaking|wins|win|beats|defeats|launch|announces)\b")

DEFAULT_MOOD = "Calm"


@dataclass(frozen=True)
class RecencyBand:
    """Bonus when an item's age falls inside [min_hours, max_hours], ``miss`` otherwise."""

    min_hours: Optional[float] = None
    max_hours: Optional[float] = None
    bonus: float = 0.0
    miss: float = 0.0

    def score(self, hours: float) -> float:
        if self.min_hours is None and self.max_hours is None:
            return 0.0
        inside = (self.min_hours is None or hours >= self.min_hours) and (
            self.max_hours is None or hours <= self.max_hours
        )
        return self.bonus if inside else self.miss


@dataclass(frozen=True)
class MoodProfile:
    keywords: tuple[str, ...]
    hit_weight: float
    lookback_hours: int
    tone: str
    why: str
    explainer_hits: bool = False
    live_hits: bool = False
    quiet_bonus: float = 0.0  # Added when the item is not live/breaking
    band: RecencyBand = RecencyBand()


MOOD_PROFILES: dict[str, MoodProfile] = {
    "Calm": MoodProfile(
        keywords=("wholesome", "nature", "uplift", "guide"),
        hit_weight=0.6,
        lookback_hours=6,
        tone="🌿",
        why="lower arousal + positive tilt",
        quiet_bonus=0.15,
    ),
    "Focused": MoodProfile(
        keywords=("analysis", "policy", "report"),
        hit_weight=0.7,
        lookback_hours=8,
        tone="📊",
        why="deep-dive/analysis fit",
        explainer_hits=True,
        band=RecencyBand(min_hours=2, bonus=0.1, miss=-0.05),
    ),
    "Curious": MoodProfile(
        keywords=("science", "research", "discovery", "space"),
        hit_weight=0.7,
        lookback_hours=6,
        tone="🔍",
        why="explainer/discovery",
        explainer_hits=True,
    ),
    "Hyped": MoodProfile(
        keywords=("sports", "launch", "win"),
        hit_weight=0.7,
        lookback_hours=3,
        tone="🔥",
        why="high energy/launch",
        live_hits=True,
        band=RecencyBand(max_hours=3, bonus=0.25),
    ),
    "Meh": MoodProfile(
        keywords=("roundup", "recap", "list", "visual", "summary"),
        hit_weight=0.65,
        lookback_hours=4,
        tone="☕",
        why="short & scannable",
    ),
    "Stressed": MoodProfile(
        keywords=("solutions", "how to", "how-to"),
        hit_weight=0.7,
        lookback_hours=5,
        tone="🧩",
        why="solutions & soothing",
        explainer_hits=True,
        band=RecencyBand(min_hours=1.5, bonus=0.05),
    ),
    "Sad": MoodProfile(
        keywords=("human", "good news", "wholesome", "community", "uplift"),
        hit_weight=0.75,
        lookback_hours=6,
        tone="💙",
        why="uplifting human stories",
    ),
}

_MOOD_LOOKUP = {name.lower(): name for name in MOOD_PROFILES}


def normalize_mood(value: Optional[str]) -> str:
    """Canonical mood name; unknown or empty input maps to Calm."""
    return _MOOD_LOOKUP.get((value or "").strip().lower(), DEFAULT_MOOD)


def clamp_blend(blend: float) -> float:
    if not math.isfinite(blend):
        return 0.5
    return min(1.0, max(0.0, blend))


def target_arousal(blend: float) -> float:
    comfort = 1.0 - clamp_blend(blend)
    return AROUSAL_TARGET_CHALLENGE - comfort * (AROUSAL_TARGET_CHALLENGE - AROUSAL_TARGET_COMFORT)


def mood_lookback(mood: Optional[str], blend: float, overrides: dict[str, int] | None = None) -> int:
    """Hours of snapshots to pool: per-mood default, shrunk toward challenge."""
    name = normalize_mood(mood)
    base = MOOD_PROFILES[name].lookback_hours
    for key, value in (overrides or {}).items():
        if key.strip().lower() == name.lower():
            base = int(value)
    delta = round((0.5 - clamp_blend(blend)) * 2)
    return max(LOOKBACK_MIN_HOURS, min(LOOKBACK_MAX_HOURS, base + delta))


def apply_tone(summary: Optional[str], mood: Optional[str]) -> str:
    if not summary or not summary.strip() or not mood:
        return summary or ""
    profile = MOOD_PROFILES.get(mood)
    return f"{profile.tone} {summary}" if profile else summary


class MoodTuning:
    """Mood-fit scorer for one request (mood + blend)."""

    def __init__(self, mood: Optional[str], blend: float) -> None:
        self.blend = clamp_blend(blend)
        self.enabled = bool(mood and mood.strip())
        self.mood = normalize_mood(mood)
        self.profile = MOOD_PROFILES[self.mood]

    def affinity(self, text: str, hours: float) -> float:
        p = self.profile
        is_live = bool(LIVE_RE.search(text))
        hit = any(k in text for k in p.keywords)
        if p.explainer_hits and EXPLAINER_RE.search(text):
            hit = True
        if p.live_hits and is_live:
            hit = True
        affinity = p.hit_weight if hit else 0.0
        if not is_live:
            affinity += p.quiet_bonus
        return affinity + p.band.score(hours)

    def arousal_fit(self, arousal: Optional[float]) -> float:
        if arousal is None or not math.isfinite(arousal):
            return 0.0
        gap = abs(min(1.0, max(0.0, arousal)) - target_arousal(self.blend))
        return AROUSAL_FIT_WEIGHT * (0.5 - gap)

    def score(
        self,
        title: str,
        summary: Optional[str],
        topics: list[str],
        published_at: datetime,
        now: datetime,
        arousal: Optional[float] = None,
    ) -> float:
        """Mood fit in [0, 1], centered on 0.5."""
        score = MOOD_NEUTRAL + self.arousal_fit(arousal)
        if self.enabled:
            text = f"{title} {summary or ''} {' '.join(topics)}".lower()
            hours = max(PERSONAL_RECENCY_MIN_HOURS, (now - published_at).total_seconds() / 3600.0)
            recency = 1.0 / math.pow(hours, MOOD_RECENCY_EXP)
            blend_recency = min(
                MOOD_BLEND_RECENCY_CAP,
                recency * (MOOD_BLEND_RECENCY_BASE + MOOD_BLEND_RECENCY_SWING * self.blend),
            )
            score += MOOD_AFFINITY_SCALE * math.tanh(self.affinity(text, hours)) + blend_recency
        return min(1.0, max(0.0, score))
