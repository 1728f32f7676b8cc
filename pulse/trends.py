from __future__ import annotations

from dataclasses import replace
from typing import Optional

from pulse.constants import TREND_DOWN, TREND_NEW, TREND_STEADY, TREND_THRESHOLD, TREND_UP
from pulse.models import RankedItem, Snapshot


def rank_map(items: list[RankedItem]) -> dict[str, int]:
    """1-indexed rank per article id (first occurrence wins)."""
    ranks: dict[str, int] = {}
    for idx, it in enumerate(items, start=1):
        ranks.setdefault(it.article_id, idx)
    return ranks


def trend_label(prev_rank: Optional[int], new_rank: int, threshold: int = TREND_THRESHOLD) -> str:
    if prev_rank is None:
        return TREND_NEW
    delta = prev_rank - new_rank  # positive = moved up
    if delta >= threshold:
        return TREND_UP
    if delta <= -threshold:
        return TREND_DOWN
    return TREND_STEADY


def label_trends(items: list[RankedItem], previous: Optional[Snapshot]) -> list[RankedItem]:
    """Copies of ``items`` carrying NEW/UP/DOWN/STEADY against the previous hour."""
    prev_ranks = rank_map(previous.items) if previous is not None else {}
    return [
        replace(it, trend=trend_label(prev_ranks.get(it.article_id), idx))
        for idx, it in enumerate(items, start=1)
    ]
