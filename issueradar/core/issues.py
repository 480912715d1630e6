"""Issue retrieval from the repository's hosting provider.

This module lists issues for a repository one page at a time through the
GitHub REST API, and walks several pages sequentially with a configurable
delay between requests.

`get_issues` never raises: failures are logged and reported as `None`, an
empty or missing URL yields `[]`. Rate-limit and server-error responses are
retried with exponential backoff before giving up.

Environment Variables:
    GITHUB_TOKEN: Optional GitHub personal access token for higher rate limits.

Rate Limits:
    - Unauthenticated: 60 requests/hour per IP
    - Authenticated: 5,000 requests/hour per token

Example:
    ```python
    from issueradar.core.issues import get_issues, fetch_issue_pages

    first_page = get_issues("https://github.com/pmndrs/jotai", page=1)
    recent = fetch_issue_pages("git@github.com:pmndrs/jotai.git", pages=3, state="open")
    ```
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging
import time

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings, load_settings
from .models import Issue, ParsedRepoRef, Provider
from .url_parser import parse_repo_url

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
ISSUE_STATES = ("open", "closed", "all")


class UnsupportedProviderError(Exception):
    """Raised when issues are requested from a provider without API support."""


class IssueFetchError(Exception):
    """Raised by a strict page walk when not even the first page could be fetched."""


class _RetryableResponse(Exception):
    """Rate-limit or server error worth another attempt."""

    def __init__(self, status_code: int, retry_after: float | None = None):
        super().__init__(f"GitHub responded {status_code}")
        self.status_code = status_code
        self.retry_after = retry_after


def _headers(token: str | None) -> Dict[str, str]:
    """Construct HTTP headers for GitHub API requests."""
    h = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": API_VERSION,
    }
    if token:
        h["Authorization"] = f"Bearer {token}"
    return h


def _provider_server(ref: ParsedRepoRef, settings: Settings) -> str:
    if ref.provider is Provider.GITHUB:
        return settings.github_api_url.rstrip("/")
    raise UnsupportedProviderError(f"Currently supports GitHub only, got {ref.provider.value}")


def _rate_limit_wait(headers: httpx.Headers) -> float | None:
    """Seconds the server asked us to wait, if it said so."""
    retry_after = headers.get("retry-after")
    if retry_after is not None:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass

    reset_raw = headers.get("x-ratelimit-reset")
    if reset_raw is not None and headers.get("x-ratelimit-remaining") == "0":
        try:
            return float(max(int(reset_raw) - int(time.time()), 0))
        except ValueError:
            pass
    return None


def _is_retryable(response: httpx.Response) -> bool:
    if response.status_code == 429 or response.status_code >= 500:
        return True
    # 403 is also used for plain permission errors; only retry real rate limits
    return response.status_code == 403 and (
        response.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in response.headers
    )


def _backoff(settings: Settings):
    exponential = wait_exponential(multiplier=settings.backoff_base, max=settings.backoff_max)

    def _wait(retry_state) -> float:
        exc = retry_state.outcome.exception()
        hinted = getattr(exc, "retry_after", None)
        if hinted is not None:
            return min(hinted, settings.backoff_max)
        return exponential(retry_state)

    return _wait


def _get_page(client: httpx.Client, url: str, params: Dict[str, Any], settings: Settings) -> List[Dict[str, Any]]:
    for attempt in Retrying(
        stop=stop_after_attempt(max(settings.max_retries, 1)),
        wait=_backoff(settings),
        retry=retry_if_exception_type(_RetryableResponse),
        reraise=True,
    ):
        with attempt:
            r = client.get(url, params=params, headers=_headers(settings.github_token))
            if _is_retryable(r):
                wait = _rate_limit_wait(r.headers)
                logger.warning(f"GitHub API returned {r.status_code} for {url}, retry in {wait or 'backoff'}s")
                raise _RetryableResponse(r.status_code, wait)
            r.raise_for_status()
            data = r.json()
            if not isinstance(data, list):
                raise ValueError(f"Unexpected issues payload of type {type(data).__name__}")
            return data
    return []


def get_issues(
    repo_url: str | None,
    page: int = 1,
    state: str = "all",
    *,
    client: httpx.Client | None = None,
    settings: Settings | None = None,
) -> Optional[List[Issue]]:
    """Return one page of issues for the repository at `repo_url`.

    Args:
        repo_url: Repository URL in any form `parse_repo_url` accepts.
        page: 1-based page number.
        state: "open", "closed" or "all".
        client: Reusable HTTP client; a short-lived one is created otherwise.
        settings: Runtime settings; loaded from config/env when omitted.

    Returns:
        The page's issues, `[]` when `repo_url` is empty, or `None` when the
        request failed (the error is logged, not raised).
    """
    if not repo_url:
        return []

    try:
        settings = settings or load_settings()
        if state not in ISSUE_STATES:
            raise ValueError(f"Unknown issue state: {state}")
        ref = parse_repo_url(repo_url)
        server = _provider_server(ref, settings)
        url = f"{server}/repos/{ref.user}/{ref.repo}/issues"
        params = {"page": page, "state": state, "per_page": settings.per_page}

        if client is None:
            with httpx.Client(timeout=20.0) as own_client:
                raw = _get_page(own_client, url, params, settings)
        else:
            raw = _get_page(client, url, params, settings)
        return [Issue.model_validate(item) for item in raw]
    except (httpx.HTTPError, _RetryableResponse, UnsupportedProviderError, ValueError) as e:
        logger.error(f"Failed to get issues for {repo_url} (page {page}): {e}")
        return None


def fetch_issue_pages(
    repo_url: str | None,
    pages: int = 1,
    state: str = "all",
    *,
    delay: float | None = None,
    include_pulls: bool = False,
    strict: bool = False,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> List[Issue]:
    """Fetch pages 1..`pages` sequentially, sleeping `delay` before each one.

    The walk stops at the first empty page. A failed page also stops it and
    whatever was gathered so far is returned.

    Args:
        repo_url: Repository URL.
        pages: Maximum number of pages to fetch.
        state: "open", "closed" or "all".
        delay: Seconds to wait before each page; defaults to `settings.page_delay`.
        include_pulls: Keep pull requests, which the issues endpoint also lists.
        strict: Raise `IssueFetchError` instead of returning `[]` when the
            first page fails.
        settings: Runtime settings; loaded from config/env when omitted.
        client: Reusable HTTP client.

    Returns:
        Issues from all fetched pages, in API order.

    Raises:
        IssueFetchError: In strict mode, if page 1 failed.
    """
    settings = settings or load_settings()
    delay = settings.page_delay if delay is None else delay
    collected: List[Issue] = []

    own_client = client is None
    client = client or httpx.Client(timeout=20.0)
    try:
        for p in range(1, pages + 1):
            if delay > 0:
                time.sleep(delay)
            logger.info(f"Getting issues... ({p}/{pages})")
            batch = get_issues(repo_url, p, state, client=client, settings=settings)
            if batch is None:
                if strict and p == 1:
                    raise IssueFetchError(f"Could not fetch issues for {repo_url}, see the log above")
                logger.warning(f"Stopping at page {p} after a failed request, keeping {len(collected)} issues")
                break
            if not batch:
                break
            collected.extend(batch)
    finally:
        if own_client:
            client.close()

    if not include_pulls:
        collected = [i for i in collected if not i.is_pull_request]
    return collected
