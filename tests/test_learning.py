import pytest

from pulse.learning import (
    FeedbackLearner,
    ema,
    extract_features,
    is_positive,
    parse_action,
    title_tokens,
    update_centroid,
)
from pulse.interests import InterestMatcher
from pulse.models import Feature, FeedbackAction, Interest
from pulse.storage import InMemoryArticleStore, centroid_doc_id
from conftest import FakeClock, make_article


class StubEmbedder:
    def __init__(self, vector):
        self.vector = vector
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        return list(self.vector)


@pytest.fixture
def learner(feedback_store):
    articles = InMemoryArticleStore(
        [
            make_article("a1", source="Reuters", title="Nvidia ships new GPU", tags=["AI"], genre="Analysis"),
            make_article("a2", source="AP", title="Rocket launch", embedding=[3.0, 4.0]),
        ]
    )
    return FeedbackLearner(feedback_store, articles, clock=FakeClock())


def test_ema_steps():
    first = ema(0.0, 1.0)
    assert first == pytest.approx(0.35)
    assert ema(first, 1.0) == pytest.approx(0.5775)
    assert ema(0.0, -5.0) == pytest.approx(-0.35)


def test_actions():
    assert is_positive("MoreLikeThis")
    assert is_positive(FeedbackAction.GREAT_EXPLAINER)
    assert not is_positive("TooIntense")
    assert not is_positive("SomethingNew")
    assert parse_action(" MoreLaunches ") is FeedbackAction.MORE_LAUNCHES
    assert parse_action("nope") is None


def test_title_tokens_skip_short_and_long():
    assert title_tokens("AI is a go: C++ wins " + "x" * 30) == ["c++", "wins"]


def test_extract_features_normalized():
    article = make_article(
        "a", source=" Reuters ", title="Nvidia ships GPU", tags=["AI"],
        genre="Analysis", event_stage="Launch", interest_matches=["i1"],
    )
    features = extract_features(article)
    assert Feature("source", "reuters") in features
    assert Feature("interest", "i1") in features
    assert Feature("tag", "ai") in features
    assert Feature("tok", "nvidia") in features
    assert Feature("genre", "analysis") in features
    assert Feature("event", "launch") in features
    assert all(f.type != "format" for f in features)


def test_update_centroid_rules():
    assert update_centroid(None, [3.0, 4.0], True, 0.12) == pytest.approx([0.6, 0.8])
    assert update_centroid([1.0, 0.0, 0.0], [0.0, 2.0], True, 0.12) == pytest.approx([0.0, 1.0])
    toward = update_centroid([1.0, 0.0], [0.0, 1.0], True, 0.5)
    assert toward == pytest.approx([2 ** -0.5, 2 ** -0.5])
    # A step away that cancels the vector keeps the old centroid.
    assert update_centroid([1.0, 0.0], [1.0, 0.0], False, 1.0) == [1.0, 0.0]
    # Zero or non-finite samples leave the centroid alone.
    assert update_centroid([0.6, 0.8], [0.0, 0.0], True, 0.12) == [0.6, 0.8]
    assert update_centroid([0.6, 0.8], [float("nan"), 1.0], False, 0.08) == [0.6, 0.8]
    assert update_centroid(None, [0.0, 0.0], True, 0.12) == []


@pytest.mark.asyncio
async def test_positive_feedback_builds_affinities(learner, feedback_store):
    await learner.record_feedback("u1", "a1", "Focused", "MoreLikeThis")
    await learner.record_feedback("u1", "a1", "focused", FeedbackAction.GREAT_EXPLAINER)

    profile = await learner.get_profile("u1", "FOCUSED")
    assert profile["source"]["reuters"] == pytest.approx(0.5775)
    assert profile["tag"]["ai"] == pytest.approx(0.5775)
    assert await learner.get_profile("u1", "Calm") == {}
    assert len(feedback_store.events) == 2
    assert {e.mood for e in feedback_store.events} == {"Focused"}


@pytest.mark.asyncio
async def test_negative_and_unknown_actions_push_down(learner, feedback_store):
    event = await learner.record_feedback("u1", "a1", None, "Whatever")
    assert event.action == "Whatever"
    assert event.mood == "Calm"
    profile = await learner.get_profile("u1", None)
    assert profile["source"]["reuters"] == pytest.approx(-0.35)


@pytest.mark.asyncio
async def test_missing_article_is_noop(learner, feedback_store):
    assert await learner.record_feedback("u1", "ghost", "Calm", "MoreLikeThis") is None
    assert await learner.record_feedback("u1", "  ", "Calm", "MoreLikeThis") is None
    assert feedback_store.events == []
    assert feedback_store.affinities == {}


@pytest.mark.asyncio
async def test_centroids_user_and_global(learner, feedback_store):
    await learner.record_feedback("u1", "a2", "Hyped", "MoreLaunches")
    user, glob = await learner.get_centroids("u1", "hyped")
    assert user == pytest.approx([0.6, 0.8])
    assert glob == pytest.approx([0.6, 0.8])
    assert feedback_store.centroids[centroid_doc_id("u1", "Hyped")].count == 1


@pytest.mark.asyncio
async def test_negative_feedback_leaves_global_centroid(learner, feedback_store):
    await learner.record_feedback("u2", "a2", "Hyped", "TooIntense")
    user, glob = await learner.get_centroids("u2", "Hyped")
    assert user == pytest.approx([0.6, 0.8])
    assert glob is None


@pytest.mark.asyncio
async def test_no_vector_means_no_centroid(learner, feedback_store):
    await learner.record_feedback("u1", "a1", "Calm", "MoreLikeThis")
    assert feedback_store.centroids == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("vector", [[0.0, 0.0, 0.0], [float("nan"), 1.0, 0.0]])
async def test_degenerate_embedding_writes_no_centroid(feedback_store, vector):
    articles = InMemoryArticleStore([make_article("z", embedding=vector)])
    learner = FeedbackLearner(feedback_store, articles, clock=FakeClock())
    await learner.record_feedback("u1", "z", "Calm", "MoreLikeThis")
    assert feedback_store.centroids == {}
    assert await learner.get_centroids("u1", "Calm") == (None, None)
    assert await learner.get_profile("u1", "Calm")


@pytest.mark.asyncio
async def test_matcher_and_embedder_fill_gaps(feedback_store):
    articles = InMemoryArticleStore([make_article("s", title="Space station crew returns")])
    embedder = StubEmbedder([0.0, 2.0])
    learner = FeedbackLearner(
        feedback_store,
        articles,
        matcher=InterestMatcher([Interest("i-space", "space")]),
        embedder=embedder,
        clock=FakeClock(),
    )
    await learner.record_feedback("u1", "s", "Curious", "MoreLikeThis")

    profile = await learner.get_profile("u1", "Curious")
    assert profile["interest"] == {"i-space": pytest.approx(0.35)}
    assert embedder.calls == ["Space station crew returns"]
    user, _ = await learner.get_centroids("u1", "Curious")
    assert user == pytest.approx([0.0, 1.0])
