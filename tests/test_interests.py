import pytest

from pulse.interests import EmbeddingCache, InterestMatcher, lexical_score, tokens
from pulse.models import Interest
from conftest import make_article

CATALOG = [
    Interest("i-ai", "ai"),
    Interest("i-space", "space"),
    Interest("i-ml", "machine learning"),
    Interest("i-cook", "cooking"),
]


class MapEmbedder:
    """Embeds known strings to fixed vectors; everything else to []."""

    def __init__(self, vectors):
        self.vectors = vectors
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        return list(self.vectors.get(text, []))


def test_cache_evicts_least_recently_used():
    cache = EmbeddingCache(max_entries=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    assert cache.get("a") == [1.0]
    cache.put("c", [3.0])
    assert "b" not in cache
    assert "a" in cache and "c" in cache
    assert len(cache) == 2


def test_cache_rejects_nonpositive_size():
    with pytest.raises(ValueError):
        EmbeddingCache(max_entries=0)


def test_lexical_score_levels():
    text = "new machine learning chips for spacecraft"
    toks = tokens(text)
    assert lexical_score("chips", text, toks) == 3
    assert lexical_score("machine learning", text, toks) == 2
    assert lexical_score("space", text, toks) == 1
    assert lexical_score("cooking", text, toks) == 0
    assert lexical_score("  ", text, toks) == 0


@pytest.mark.asyncio
async def test_lexical_match_orders_by_strength():
    matcher = InterestMatcher(CATALOG)
    found = await matcher.match("Machine learning lab builds AI for spacecraft")
    assert found == ["i-ai", "i-ml", "i-space"]
    assert await matcher.match("   ") == []


@pytest.mark.asyncio
async def test_existing_matches_are_kept():
    matcher = InterestMatcher(CATALOG)
    article = make_article("a", title="Cooking tips", interest_matches=["i-space"])
    assert await matcher.match_article(article) == ["i-space"]


@pytest.mark.asyncio
async def test_embedding_match_uses_cosine_and_caches():
    embedder = MapEmbedder(
        {
            "ai": [1.0, 0.0],
            "space": [0.0, 1.0],
            "machine learning": [0.9, 0.1],
            "cooking": [-1.0, 0.0],
        }
    )
    matcher = InterestMatcher(CATALOG, embedder=embedder)
    found = await matcher.match("robots", doc_vector=[1.0, 0.05])
    assert found == ["i-ai", "i-ml"]
    assert len(matcher.cache) == 4

    embedder.calls.clear()
    await matcher.match("robots", doc_vector=[1.0, 0.05])
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_missing_doc_vector_falls_back_to_lexical():
    matcher = InterestMatcher(CATALOG, embedder=MapEmbedder({}))
    assert await matcher.match("Cooking with kids") == ["i-cook"]


@pytest.mark.asyncio
async def test_article_vector_is_embedded_once():
    text = "Robots learn to cook"
    embedder = MapEmbedder({text: [1.0, 0.0], "ai": [1.0, 0.0]})
    matcher = InterestMatcher(CATALOG, embedder=embedder)
    article = make_article("r", title="Robots learn to cook")

    assert await matcher.article_vector(article) == [1.0, 0.0]
    assert await matcher.match_article(article) == ["i-ai"]
    assert embedder.calls.count(text) == 1

    own = make_article("o", embedding=[0.0, 1.0])
    assert await matcher.article_vector(own) == [0.0, 1.0]
    assert text == embedder.calls[0]
    assert "article:o" not in matcher.cache
    assert await InterestMatcher(CATALOG).article_vector(article) == []
