import json
from datetime import timedelta

import pytest

from pulse.cache_utils import atomic_write_json, evict_old_files, read_json
from pulse.errors import StoreUnavailableError
from pulse.filestore import JsonArticleStore, JsonFeedbackStore, JsonSnapshotStore, JsonUserStore
from pulse.models import FeatureAffinity, MoodCentroid, Snapshot
from conftest import NOW, make_article, make_item


def test_atomic_write_and_read(tmp_path):
    path = tmp_path / "nested" / "doc.json"
    atomic_write_json(path, {"a": 1})
    assert read_json(path) == {"a": 1}
    assert not list(path.parent.glob("*.tmp"))


def test_read_json_tolerates_missing_and_corrupt(tmp_path):
    assert read_json(tmp_path / "missing.json", []) == []
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    assert read_json(bad, {"d": 1}) == {"d": 1}


def test_evict_old_files_keeps_newest(tmp_path):
    for name in ["2025-06-01", "2025-06-02", "2025-06-03"]:
        (tmp_path / f"{name}.json").write_text("{}")
    removed = evict_old_files(tmp_path, "*.json", 2)
    assert len(removed) == 1
    assert len(list(tmp_path.glob("*.json"))) == 2
    assert evict_old_files(tmp_path / "nope", "*.json", 1) == []


@pytest.mark.asyncio
async def test_article_store_round_trip(tmp_path):
    store = JsonArticleStore(tmp_path, batch_limit=2)
    await store.add([make_article("a", hours_ago=1, tags=["AI"], embedding=[0.1, 0.2]), make_article("b", hours_ago=30)])

    got = await store.get_by_id("a")
    assert got.tags == ["AI"]
    assert got.embedding == [0.1, 0.2]
    assert got.published_at == make_article("a", hours_ago=1).published_at
    assert await store.get_by_id("zzz") is None

    window = await store.query_by_time_window(NOW - timedelta(hours=2), NOW)
    assert [a.id for a in window] == ["a"]
    assert [a.id for a in await store.get_by_ids(["b", "x"])] == ["b"]
    with pytest.raises(ValueError):
        await store.get_by_ids(["a", "b", "c"])


@pytest.mark.asyncio
async def test_snapshot_store_layout_and_replace(tmp_path):
    store = JsonSnapshotStore(tmp_path)
    await store.set("2025-06-10", 9, Snapshot("2025-06-10", 9, NOW, [make_item("a")]))
    await store.set("2025-06-10", 13, Snapshot("2025-06-10", 13, NOW, [make_item("b")]))
    await store.set("2025-06-10", 9, Snapshot("2025-06-10", 9, NOW, [make_item("c")]))

    doc = json.loads((tmp_path / "snapshots" / "2025-06-10.json").read_text())
    assert sorted(doc["hours"]) == ["13", "9"]
    assert [i.article_id for i in (await store.get("2025-06-10", 9)).items] == ["c"]
    assert [h for h, _ in await store.list_hours("2025-06-10")] == [9, 13]
    assert await store.exists("2025-06-10", 13)
    assert await store.get("2025-06-11", 0) is None


@pytest.mark.asyncio
async def test_snapshot_store_evicts_old_days(tmp_path):
    store = JsonSnapshotStore(tmp_path, max_files=2)
    for day in ["2025-06-08", "2025-06-09", "2025-06-10"]:
        await store.set(day, 1, Snapshot(day, 1, NOW, []))
    assert sorted(p.stem for p in (tmp_path / "snapshots").glob("*.json")) == ["2025-06-09", "2025-06-10"]


@pytest.mark.asyncio
async def test_snapshot_write_failure_is_store_unavailable(tmp_path):
    blocker = tmp_path / "snapshots"
    blocker.write_text("a file where the directory should be")
    store = JsonSnapshotStore(tmp_path)
    with pytest.raises(StoreUnavailableError):
        await store.set("2025-06-10", 1, Snapshot("2025-06-10", 1, NOW, []))


@pytest.mark.asyncio
async def test_feedback_store_round_trip(tmp_path):
    store = JsonFeedbackStore(tmp_path)
    await store.set_affinity(FeatureAffinity("u1", "calm", "source", "bbc", 0.35, 1, NOW))
    await store.set_affinity(FeatureAffinity("u1", "hyped", "source", "bbc", -0.35, 1, NOW))
    await store.set_centroid(MoodCentroid("GLOBAL", "Calm", [0.6, 0.8], 3, NOW))

    got = await store.get_affinity("u1", "calm", "source", "bbc")
    assert got.score == 0.35
    assert got.updated_at == NOW
    assert [a.mood for a in await store.list_affinities("u1", "calm")] == ["calm"]
    assert (await store.get_centroid("GLOBAL", "Calm")).vector == [0.6, 0.8]
    assert await store.get_centroid("u1", "Calm") is None


@pytest.mark.asyncio
async def test_user_store_reads_users_json(tmp_path):
    (tmp_path / "users.json").write_text(
        json.dumps(
            {
                "interests": {"u1": ["AI", " ", "Space"]},
                "catalog": [{"id": "i1", "name": "AI"}, {"id": "", "name": "broken"}],
                "moods": {"u1": {"mood": "Hyped", "blend": "bad"}},
                "saved": {"u1": ["a", "b"]},
            }
        )
    )
    store = JsonUserStore(tmp_path, batch_limit=3)
    assert await store.get_interest_names("u1") == ["AI", "Space"]
    assert [i.id for i in await store.list_interests()] == ["i1"]
    mood = await store.get_mood("u1")
    assert (mood.mood, mood.blend) == ("Hyped", 0.3)
    assert await store.get_mood("u2") is None
    assert await store.saved_among("u1", ["a", "c"]) == {"a"}
    with pytest.raises(ValueError):
        await store.saved_among("u1", ["a", "b", "c", "d"])
