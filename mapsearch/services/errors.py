from __future__ import annotations

from typing import Optional


class SearchError(Exception):
    """Base class for search pipeline failures."""


class ProviderUnavailable(SearchError):
    """The provider is not configured (e.g. missing API key)."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} is not configured")
        self.provider = provider


class ProviderError(SearchError):
    """Non-success status or network failure from an external provider."""

    def __init__(self, provider: str, message: str = "", status: Optional[int] = None) -> None:
        detail = message or (f"HTTP {status}" if status is not None else "request failed")
        super().__init__(f"{provider} error: {detail}")
        self.provider = provider
        self.status = status


class RequestCancelled(SearchError):
    """The request's cancellation token fired while it was waiting on I/O."""
