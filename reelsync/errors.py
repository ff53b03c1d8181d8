"""Error categories surfaced to views and raised by provider clients."""

from __future__ import annotations

from enum import Enum

import httpx


class NetworkError(str, Enum):
    """Typed error categories a view can be asked to display."""

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Raised by a provider client when a request cannot be completed."""

    def __init__(self, provider: str, error: NetworkError, detail: str = "") -> None:
        message = f"{provider} request failed ({error.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.provider = provider
        self.error = error
        self.detail = detail

    @classmethod
    def from_status(
        cls, provider: str, status_code: int, detail: str = ""
    ) -> "ProviderError":
        if status_code in (401, 403):
            category = NetworkError.UNAUTHORIZED
        elif status_code == 404:
            category = NetworkError.NOT_FOUND
        elif status_code == 409:
            category = NetworkError.CONFLICT
        elif status_code >= 500:
            category = NetworkError.SERVER_ERROR
        else:
            category = NetworkError.UNKNOWN
        return cls(provider, category, detail)

    @classmethod
    def from_exception(cls, provider: str, exc: httpx.HTTPError) -> "ProviderError":
        return cls(provider, NetworkError.NETWORK_ERROR, exc.__class__.__name__)


class LoginRequiredError(RuntimeError):
    """An operation that needs an authenticated session ran without one."""
