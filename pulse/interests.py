"""Match an article's text against the interest catalog.

With an embedder, each interest scores ``max(0, cosine)`` plus small lexical
boosts; without one, a purely lexical score is used. Interest vectors live
in an explicit bounded LRU cache owned by the matcher, next to document
vectors computed for articles that arrive without an embedding.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Optional

from cachetools import LRUCache

from pulse.constants import (
    EMBEDDING_CACHE_MAX_ENTRIES,
    INTEREST_LEXICAL_BOOST,
    INTEREST_MATCH_THRESHOLD,
    INTEREST_MAX_MATCHES,
)
from pulse.embeddings import Embedder
from pulse.logging_config import get_logger
from pulse.models import Candidate, Interest
from pulse.vectors import cosine

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9+#]+")


class EmbeddingCache:
    """Least-recently-used map of key -> vector, capped at ``max_entries``."""

    def __init__(self, max_entries: int = EMBEDDING_CACHE_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._data: LRUCache[str, list[float]] = LRUCache(maxsize=max_entries)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str) -> Optional[list[float]]:
        return self._data.get(key)

    def put(self, key: str, vector: list[float]) -> None:
        self._data[key] = vector


def tokens(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def lexical_score(name: str, text: str, text_tokens: set[str]) -> int:
    """3 for an exact token hit, 2 for a word-boundary phrase, 1 for a substring."""
    needle = name.strip().lower()
    if not needle:
        return 0
    if needle in text_tokens:
        return 3
    if re.search(rf"\b{re.escape(needle)}\b", text):
        return 2
    return 1 if needle in text else 0


def article_text(article: Candidate) -> str:
    return f"{article.title} {article.summary or ''} {' '.join(article.tags)}".strip()


class InterestMatcher:
    def __init__(
        self,
        catalog: Sequence[Interest],
        embedder: Embedder | None = None,
        cache: EmbeddingCache | None = None,
        threshold: float = INTEREST_MATCH_THRESHOLD,
        max_matches: int = INTEREST_MAX_MATCHES,
    ) -> None:
        self.catalog = list(catalog)
        self.embedder = embedder
        self.cache = cache or EmbeddingCache()
        self.threshold = threshold
        self.max_matches = max_matches

    async def _interest_vector(self, interest: Interest) -> list[float]:
        cached = self.cache.get(interest.id)
        if cached is not None:
            return cached
        vec = await self.embedder.embed(interest.name) if self.embedder else []
        if vec:
            self.cache.put(interest.id, vec)
        return vec

    def match_lexical(self, text: str) -> list[str]:
        lowered = text.lower()
        text_tokens = tokens(lowered)
        scored = [(lexical_score(i.name, lowered, text_tokens), i.id) for i in self.catalog]
        scored = [(s, iid) for s, iid in scored if s > 0]
        scored.sort(key=lambda p: p[0], reverse=True)
        return [iid for _, iid in scored[: self.max_matches]]

    async def match(self, text: str, doc_vector: Sequence[float] | None = None) -> list[str]:
        """Interest ids for ``text``, best first."""
        if not self.catalog or not text.strip():
            return []
        if self.embedder is None:
            return self.match_lexical(text)

        if not doc_vector:
            doc_vector = await self.embedder.embed(text)
        if not doc_vector:
            logger.warning("interest_match_lexical_fallback", reason="no document vector")
            return self.match_lexical(text)

        lowered = text.lower()
        text_tokens = tokens(lowered)
        scored: list[tuple[float, str]] = []
        for interest in self.catalog:
            sim = cosine(doc_vector, await self._interest_vector(interest))
            score = max(0.0, sim or 0.0)
            lex = lexical_score(interest.name, lowered, text_tokens)
            if lex == 3:
                score += INTEREST_LEXICAL_BOOST
            if lex >= 2:
                score += INTEREST_LEXICAL_BOOST
            if score >= self.threshold:
                scored.append((score, interest.id))
        scored.sort(key=lambda p: p[0], reverse=True)
        return [iid for _, iid in scored[: self.max_matches]]

    async def article_vector(self, article: Candidate) -> list[float]:
        """The article's own embedding, else a cached embedding of its text."""
        if article.embedding:
            return list(article.embedding)
        if self.embedder is None:
            return []
        key = f"article:{article.id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        vec = await self.embedder.embed(article_text(article))
        if vec:
            self.cache.put(key, vec)
        return vec

    async def match_article(self, article: Candidate) -> list[str]:
        if article.interest_matches:
            return list(article.interest_matches)
        text = article_text(article)
        if not self.catalog or not text.strip():
            return []
        return await self.match(text, await self.article_vector(article))
