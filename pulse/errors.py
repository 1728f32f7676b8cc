from __future__ import annotations


class PulseError(RuntimeError):
    """Base error for the ranking engine."""


class StoreUnavailableError(PulseError):
    """Raised when a storage collaborator cannot serve a request."""


class RerankerError(PulseError):
    """Raised for non-retryable reranker failures."""


class RerankerRetryableError(RerankerError):
    """Raised for retryable reranker failures (HTTP 429/5xx)."""

    def __init__(self, message: str, cooldown: float | None = None) -> None:
        super().__init__(message)
        self.cooldown = cooldown
