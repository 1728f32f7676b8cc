from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

from pulse.constants import FALLBACK_BUCKET, PREFERRED_BUCKETS
from pulse.models import RankedItem

T = TypeVar("T")


def coarse_bucket(topics: Sequence[str] | None) -> str:
    """First preferred bucket present in topics, else the first raw topic, else misc."""
    if not topics:
        return FALLBACK_BUCKET
    lowered = [t.strip().lower() for t in topics if t and t.strip()]
    if not lowered:
        return FALLBACK_BUCKET
    for bucket in PREFERRED_BUCKETS:
        if bucket in lowered:
            return bucket
    return lowered[0]


def source_key(source_id: str | None) -> str:
    return (source_id or "source").strip().lower()


class CapCounter:
    """Running per-source / per-bucket counts for capped admission."""

    def __init__(self, per_source_cap: int, per_bucket_cap: int) -> None:
        self.per_source_cap = per_source_cap
        self.per_bucket_cap = per_bucket_cap
        self.by_source: dict[str, int] = {}
        self.by_bucket: dict[str, int] = {}

    def allows(self, source: str, bucket: str) -> bool:
        return (
            self.by_source.get(source, 0) < self.per_source_cap
            and self.by_bucket.get(bucket, 0) < self.per_bucket_cap
        )

    def add(self, source: str, bucket: str) -> None:
        self.by_source[source] = self.by_source.get(source, 0) + 1
        self.by_bucket[bucket] = self.by_bucket.get(bucket, 0) + 1


def select_diverse(
    items: Sequence[T],
    target: int,
    per_source_cap: int,
    per_bucket_cap: int,
    score: Callable[[T], float],
    source: Callable[[T], str | None],
    topics: Callable[[T], Sequence[str]],
    ident: Callable[[T], str],
) -> list[T]:
    """Capped pass in descending score order, then an uncapped top-up to ``target``."""
    if target <= 0 or not items:
        return []
    ordered = sorted(items, key=score, reverse=True)
    counter = CapCounter(per_source_cap, per_bucket_cap)
    chosen: list[T] = []
    taken: set[str] = set()

    for it in ordered:
        src, bucket = source_key(source(it)), coarse_bucket(topics(it))
        if not counter.allows(src, bucket):
            continue
        chosen.append(it)
        taken.add(ident(it))
        counter.add(src, bucket)
        if len(chosen) >= target:
            return chosen

    for it in ordered:
        if ident(it) in taken:
            continue
        chosen.append(it)
        taken.add(ident(it))
        if len(chosen) >= target:
            break
    return chosen


def diversify_items(
    items: Sequence[RankedItem],
    target: int,
    per_source_cap: int,
    per_bucket_cap: int,
) -> list[RankedItem]:
    return select_diverse(
        items,
        target,
        per_source_cap,
        per_bucket_cap,
        score=lambda i: i.heat,
        source=lambda i: i.source_id,
        topics=lambda i: i.topics,
        ident=lambda i: i.article_id,
    )
