"""HTTP client for the remote test-run collector."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit, urlunsplit

import requests

from rewind import __version__

if TYPE_CHECKING:
    from collections.abc import Mapping

_TEST_RUNS_PATH = "/api/v1/test-runs"
_HTTP_SUCCESS_MIN = 200
_HTTP_SUCCESS_MAX = 300
_MAX_ERROR_BODY_CHARS = 300


class CollectorClientError(RuntimeError):
    """Raised when a collector API request fails."""


@dataclass
class CollectorConfig:
    """Where and how to reach the collector."""

    url: str = ""
    api_key: str = ""
    timeout_seconds: float = 15.0

    @property
    def is_configured(self) -> bool:
        return bool(self.url.strip() and self.api_key.strip())


def normalize_collector_url(url: str) -> str:
    """Normalize and trim a configured collector URL."""
    return url.strip().rstrip("/")


def build_test_runs_url(collector_url: str) -> str:
    """Build the test-run upload URL, tolerating a base URL that already ends in ``/api/v1``."""
    split = urlsplit(normalize_collector_url(collector_url))
    base_path = split.path.rstrip("/")
    target_path = _TEST_RUNS_PATH
    if base_path.endswith("/api/v1"):
        target_path = target_path[len("/api/v1") :]
    elif base_path.endswith("/api"):
        target_path = target_path[len("/api") :]

    return urlunsplit(
        (split.scheme, split.netloc, f"{base_path}{target_path}", split.query, split.fragment)
    )


def post_test_run(
    config: CollectorConfig,
    payload: Mapping[str, Any],
    *,
    timeout_seconds: float | None = None,
) -> dict[str, Any]:
    """Upload one test-run payload to the collector.

    Raises:
        CollectorClientError: When the collector is not configured, the
            request fails, or the response status is not 2xx.
    """
    if not config.is_configured:
        raise CollectorClientError("Collector URL and API key are required for upload.")

    try:
        response = requests.post(
            build_test_runs_url(config.url),
            headers={
                "Authorization": f"Bearer {config.api_key.strip()}",
                "Content-Type": "application/json",
                "User-Agent": f"rewind-reporter/{__version__}",
            },
            json=dict(payload),
            timeout=timeout_seconds or config.timeout_seconds,
        )
    except requests.RequestException as exc:
        raise CollectorClientError(f"Test run upload failed: {exc}") from exc

    if response.status_code < _HTTP_SUCCESS_MIN or response.status_code >= _HTTP_SUCCESS_MAX:
        message = response.text.strip()[:_MAX_ERROR_BODY_CHARS]
        raise CollectorClientError(
            f"Test run upload failed (HTTP {response.status_code}): {message}"
        )

    try:
        body = response.json()
    except ValueError:
        return {}

    return body if isinstance(body, dict) else {}


async def post_test_run_async(
    config: CollectorConfig,
    payload: Mapping[str, Any],
) -> dict[str, Any]:
    """Run :func:`post_test_run` off the event loop."""
    return await asyncio.to_thread(post_test_run, config, payload)
