import random
from datetime import datetime, timedelta, timezone

import pytest

from pulse.config import Settings
from pulse.models import Candidate, RankedItem
from pulse.service import PulseService
from pulse.storage import (
    InMemoryArticleStore,
    InMemoryFeedbackStore,
    InMemorySnapshotStore,
    InMemoryUserStore,
)

# 14:30 in New York (EDT, UTC-4)
NOW = datetime(2025, 6, 10, 18, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_article(
    id,
    hours_ago=1.0,
    source="Source A",
    url=None,
    title=None,
    now=NOW,
    **kwargs,
):
    return Candidate(
        id=id,
        url=url or f"https://news.example.com/{id}",
        title=title or f"Story {id}",
        source_id=source,
        published_at=now - timedelta(hours=hours_ago),
        created_at=kwargs.pop("created_at", now - timedelta(hours=hours_ago)),
        **kwargs,
    )


def make_item(
    id,
    heat=0.5,
    score=None,
    source="Source A",
    topics=None,
    hours_ago=1.0,
    title=None,
    summary=None,
    now=NOW,
):
    return RankedItem(
        article_id=id,
        score_global=heat if score is None else score,
        heat=heat,
        title=title or f"Story {id}",
        source_id=source,
        published_at=now - timedelta(hours=hours_ago),
        summary=summary,
        topics=list(topics or []),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings.from_config({"timezone": "America/New_York", "reranker_enabled": False})


@pytest.fixture
def article_store():
    return InMemoryArticleStore()


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def feedback_store():
    return InMemoryFeedbackStore()


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def service(article_store, snapshot_store, feedback_store, user_store, settings, clock):
    return PulseService(
        articles=article_store,
        snapshots=snapshot_store,
        settings=settings,
        feedback=feedback_store,
        users=user_store,
        moods=user_store,
        saved=user_store,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.config/pulse."""
    config_dir = tmp_path / "config"
    monkeypatch.setattr("pulse.config.CONFIG_DIR", config_dir)
    monkeypatch.setattr("pulse.config.CONFIG_FILE", config_dir / "config.json")
    monkeypatch.delenv("PULSE_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    yield config_dir
