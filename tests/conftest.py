"""Shared fixtures for the issueradar test suite."""

import pytest

from issueradar.core.config import Settings

ENV_VARS = [
    "GITHUB_TOKEN",
    "OPENAI_API_KEY",
    "OLLAMA_BASE_URL",
    "SUMMARIZER",
    "SUMMARY_MODEL",
    "SUMMARY_NUM_CTX",
    "ISSUERADAR_STORE",
    "ISSUERADAR_API_URL",
    "ISSUERADAR_SESSION_TOKEN",
    "ISSUERADAR_ROLE",
    "ISSUERADAR_PAGE_DELAY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path):
    """Fast settings: no page delay, no backoff, cache in a temp dir."""
    return Settings(
        page_delay=0,
        backoff_base=0,
        backoff_max=0,
        max_retries=3,
        persist_attempts=3,
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def issue_payloads():
    """Two issues and one pull request as the GitHub API returns them."""
    return [
        {
            "id": 101,
            "number": 1,
            "title": "Crash on start",
            "body": "It crashes.\n\n![screenshot](https://example.com/a.png)",
            "state": "open",
            "html_url": "https://github.com/pmndrs/jotai/issues/1",
            "labels": [{"name": "bug"}],
        },
        {
            "id": 102,
            "number": 2,
            "title": "Docs typo",
            "body": "See the [guide](https://example.com/guide).",
            "state": "closed",
            "html_url": "https://github.com/pmndrs/jotai/issues/2",
            "labels": [],
        },
        {
            "id": 103,
            "number": 3,
            "title": "Fix typo",
            "body": None,
            "state": "open",
            "html_url": "https://github.com/pmndrs/jotai/pull/3",
            "pull_request": {"url": "https://api.github.com/repos/pmndrs/jotai/pulls/3"},
        },
    ]
