from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pulse.constants import (
    BOOST_KEYWORDS,
    DEFAULT_BLEND,
    DEFAULT_TAKE,
    DEFAULT_TIMEZONE,
    EMBEDDING_MODEL,
    ON_DEMAND_AFTER_MINUTES,
    ON_DEMAND_AFTER_MINUTES_MAX,
    PENALTY_KEYWORDS,
    PERSONAL_MIN_BUCKETS,
    PERSONAL_MIN_DELTA_FROM_GLOBAL,
    PERSONAL_PER_BUCKET_CAP,
    PERSONAL_PER_SOURCE_CAP,
    RERANKER_BASE_URL,
    RERANKER_ENABLED,
    RERANKER_MAX_CANDIDATES,
    RERANKER_MAX_CANDIDATES_MAX,
    RERANKER_MAX_CANDIDATES_MIN,
    RERANKER_MODEL,
    RERANKER_TIMEOUT_MIN_SECONDS,
    RERANKER_TIMEOUT_SECONDS,
    RERANKER_TOP_K_MIN,
    SCHEDULE_INTERVAL_MINUTES,
    SNAPSHOT_PER_BUCKET_CAP,
    SNAPSHOT_PER_SOURCE_CAP,
    SNAPSHOT_STORE_COUNT,
    SNAPSHOT_STORE_COUNT_MAX,
    SNAPSHOT_STORE_COUNT_MIN,
    TAKE_MAX,
    TAKE_MIN,
    TIER1_SOURCES,
    WARMUP_MINUTES,
    WARMUP_MINUTES_MAX,
)

CONFIG_DIR = Path.home() / ".config" / "pulse"
CONFIG_FILE = CONFIG_DIR / "config.json"


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return json.load(f)
    except Exception:
        return {}


def save_config(key: str, value: object):
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config[key] = value
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


def get_api_key() -> Optional[str]:
    return os.environ.get("PULSE_API_KEY") or os.environ.get("OPENAI_API_KEY")


def _int(cfg: dict, key: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(cfg.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(lo, min(hi, value))


def _float(cfg: dict, key: str, default: float, lo: float, hi: float) -> float:
    try:
        value = float(cfg.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(lo, min(hi, value))


def _bool(cfg: dict, key: str, default: bool) -> bool:
    value = cfg.get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _strings(cfg: dict, key: str, defaults: list[str], lower: bool = False) -> list[str]:
    raw = cfg.get(key)
    values = [str(v).strip() for v in raw if str(v).strip()] if isinstance(raw, list) else []
    if not values:
        values = list(defaults)
    return [v.lower() for v in values] if lower else values


@dataclass
class Settings:
    """Clamped runtime knobs for the ranking engine."""

    timezone: str = DEFAULT_TIMEZONE
    take: int = DEFAULT_TAKE
    interval_minutes: int = SCHEDULE_INTERVAL_MINUTES
    warmup_minutes: int = WARMUP_MINUTES
    on_demand_after_minutes: int = ON_DEMAND_AFTER_MINUTES
    store_count: int = SNAPSHOT_STORE_COUNT
    per_source_cap: int = SNAPSHOT_PER_SOURCE_CAP
    per_bucket_cap: int = SNAPSHOT_PER_BUCKET_CAP
    reranker_enabled: bool = RERANKER_ENABLED
    reranker_max_candidates: int = RERANKER_MAX_CANDIDATES
    reranker_top_k: int = DEFAULT_TAKE
    reranker_model: str = RERANKER_MODEL
    reranker_base_url: str = RERANKER_BASE_URL
    reranker_timeout_seconds: float = RERANKER_TIMEOUT_SECONDS
    embedding_model: str = EMBEDDING_MODEL
    personal_per_source_cap: int = PERSONAL_PER_SOURCE_CAP
    personal_per_bucket_cap: int = PERSONAL_PER_BUCKET_CAP
    personal_min_buckets: int = PERSONAL_MIN_BUCKETS
    personal_min_delta_from_global: float = PERSONAL_MIN_DELTA_FROM_GLOBAL
    default_blend: float = DEFAULT_BLEND
    lookback_overrides: dict[str, int] = field(default_factory=dict)
    tier1_sources: list[str] = field(default_factory=lambda: list(TIER1_SOURCES))
    boost_keywords: list[str] = field(default_factory=lambda: list(BOOST_KEYWORDS))
    penalty_keywords: list[str] = field(default_factory=lambda: list(PENALTY_KEYWORDS))

    @classmethod
    def from_config(cls, cfg: dict | None = None) -> Settings:
        cfg = cfg or {}
        take = _int(cfg, "take", DEFAULT_TAKE, TAKE_MIN, TAKE_MAX)
        lookbacks = cfg.get("lookback_overrides")
        return cls(
            timezone=str(cfg.get("timezone") or DEFAULT_TIMEZONE),
            take=take,
            interval_minutes=_int(cfg, "interval_minutes", SCHEDULE_INTERVAL_MINUTES, 1, 24 * 60),
            warmup_minutes=_int(cfg, "warmup_minutes", WARMUP_MINUTES, 0, WARMUP_MINUTES_MAX),
            on_demand_after_minutes=_int(
                cfg, "on_demand_after_minutes", ON_DEMAND_AFTER_MINUTES, 0, ON_DEMAND_AFTER_MINUTES_MAX
            ),
            store_count=_int(
                cfg, "store_count", SNAPSHOT_STORE_COUNT, SNAPSHOT_STORE_COUNT_MIN, SNAPSHOT_STORE_COUNT_MAX
            ),
            per_source_cap=_int(cfg, "per_source_cap", SNAPSHOT_PER_SOURCE_CAP, 1, 5),
            per_bucket_cap=_int(cfg, "per_bucket_cap", SNAPSHOT_PER_BUCKET_CAP, 4, 24),
            reranker_enabled=_bool(cfg, "reranker_enabled", RERANKER_ENABLED),
            reranker_max_candidates=_int(
                cfg,
                "reranker_max_candidates",
                RERANKER_MAX_CANDIDATES,
                RERANKER_MAX_CANDIDATES_MIN,
                RERANKER_MAX_CANDIDATES_MAX,
            ),
            reranker_top_k=_int(
                cfg, "reranker_top_k", take, RERANKER_TOP_K_MIN, max(RERANKER_TOP_K_MIN, take)
            ),
            reranker_model=str(cfg.get("reranker_model") or RERANKER_MODEL),
            reranker_base_url=str(cfg.get("reranker_base_url") or RERANKER_BASE_URL),
            reranker_timeout_seconds=_float(
                cfg, "reranker_timeout_seconds", RERANKER_TIMEOUT_SECONDS, RERANKER_TIMEOUT_MIN_SECONDS, 120.0
            ),
            embedding_model=str(cfg.get("embedding_model") or EMBEDDING_MODEL),
            personal_per_source_cap=_int(cfg, "personal_per_source_cap", PERSONAL_PER_SOURCE_CAP, 1, 4),
            personal_per_bucket_cap=_int(cfg, "personal_per_bucket_cap", PERSONAL_PER_BUCKET_CAP, 1, 24),
            personal_min_buckets=_int(cfg, "personal_min_buckets", PERSONAL_MIN_BUCKETS, 2, 8),
            personal_min_delta_from_global=_float(
                cfg, "personal_min_delta_from_global", PERSONAL_MIN_DELTA_FROM_GLOBAL, 0.0, 0.5
            ),
            default_blend=_float(cfg, "default_blend", DEFAULT_BLEND, 0.0, 1.0),
            lookback_overrides={
                str(k): int(v) for k, v in lookbacks.items() if isinstance(v, (int, float))
            }
            if isinstance(lookbacks, dict)
            else {},
            tier1_sources=_strings(cfg, "tier1_sources", TIER1_SOURCES),
            boost_keywords=_strings(cfg, "boost_keywords", BOOST_KEYWORDS, lower=True),
            penalty_keywords=_strings(cfg, "penalty_keywords", PENALTY_KEYWORDS, lower=True),
        )

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")


def load_settings() -> Settings:
    return Settings.from_config(load_config())
