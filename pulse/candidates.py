from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pulse.constants import ARTICLE_QUERY_LIMIT, MIN_WINDOW_RESULTS, WIDENED_WINDOW_HOURS
from pulse.logging_config import get_logger
from pulse.models import Candidate, Cluster
from pulse.storage import ArticleStore
from pulse.url_utils import canonicalize_url

logger = get_logger(__name__)

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


async def fetch_window(
    store: ArticleStore,
    start: datetime,
    end: datetime,
    limit: int = ARTICLE_QUERY_LIMIT,
) -> list[Candidate]:
    """Articles published in [start, end]; widened backwards when the window is thin."""
    articles = await store.query_by_time_window(start, end, limit=limit)
    if len(articles) >= MIN_WINDOW_RESULTS:
        return articles

    widened_start = start - timedelta(hours=WIDENED_WINDOW_HOURS)
    more = await store.query_by_time_window(widened_start, end, limit=limit)
    seen = {a.id for a in articles}
    for a in more:
        if a.id not in seen:
            seen.add(a.id)
            articles.append(a)
    logger.info("candidate_window_widened", found=len(articles), hours=WIDENED_WINDOW_HOURS)
    return articles


def cluster_key(article: Candidate) -> str:
    return canonicalize_url(article.url) or article.id


def _recency_key(article: Candidate) -> tuple[datetime, datetime]:
    return article.published_at, article.created_at or _EPOCH


def pick_representative(group: list[Candidate]) -> Candidate:
    """Latest published wins; ties go to the latest ingested."""
    return max(group, key=_recency_key)


def build_clusters(articles: list[Candidate]) -> list[Cluster]:
    """Group by canonical URL, one representative per group, in first-seen order."""
    groups: dict[str, list[Candidate]] = {}
    for a in articles:
        groups.setdefault(cluster_key(a), []).append(a)

    clusters: list[Cluster] = []
    for key, group in groups.items():
        sources = {(a.source_id or "src").strip().lower() for a in group}
        clusters.append(Cluster(key=key, representative=pick_representative(group), size=len(sources)))
    return clusters
