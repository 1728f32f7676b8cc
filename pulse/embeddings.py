"""Text embeddings from an OpenAI-compatible ``/v1/embeddings`` endpoint.

A missing vector only means "no vector boost", so the embedder never
raises: every failure is logged and comes back as ``[]``.
"""

from __future__ import annotations

from typing import Protocol

import httpx
from aiolimiter import AsyncLimiter

from pulse.constants import (
    EMBEDDING_MODEL,
    EMBEDDING_RATE_LIMIT,
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_USER_AGENT,
    HTTP_WRITE_TIMEOUT,
    RERANKER_BASE_URL,
    RERANKER_TIMEOUT_SECONDS,
)
from pulse.logging_config import get_logger

logger = get_logger(__name__)

EMBED_TEXT_MAX_CHARS = 8000


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class HttpEmbedder:
    def __init__(
        self,
        api_key: str,
        model: str = EMBEDDING_MODEL,
        base_url: str = RERANKER_BASE_URL,
        timeout_seconds: float = RERANKER_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=HTTP_CONNECT_TIMEOUT,
                read=timeout_seconds,
                write=HTTP_WRITE_TIMEOUT,
                pool=HTTP_POOL_TIMEOUT,
            )
        )
        self.limiter = limiter or AsyncLimiter(EMBEDDING_RATE_LIMIT, 60)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> HttpEmbedder:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def embed(self, text: str) -> list[float]:
        text = (text or "").strip()
        if not text:
            return []
        try:
            async with self.limiter:
                resp = await self.client.post(
                    f"{self.base_url}/v1/embeddings",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "User-Agent": HTTP_USER_AGENT,
                    },
                    json={"model": self.model, "input": text[:EMBED_TEXT_MAX_CHARS]},
                )
            resp.raise_for_status()
            vector = resp.json()["data"][0]["embedding"]
            return [float(x) for x in vector]
        except httpx.HTTPError as e:
            logger.warning("embedding_failed", error=repr(e))
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("embedding_malformed", error=repr(e))
        return []
