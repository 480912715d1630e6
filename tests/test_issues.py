"""Tests for issue retrieval (HTTP mocked)."""

from unittest.mock import patch, MagicMock

import httpx
import pytest

from issueradar.core.issues import IssueFetchError, get_issues, fetch_issue_pages
from issueradar.core.models import Issue

REPO = "https://github.com/pmndrs/jotai"


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestGetIssues:
    """Test fetching a single page."""

    def test_empty_url_returns_empty_list(self, settings):
        """No URL means no request and an empty page."""
        def handler(request):
            raise AssertionError("no request expected")

        assert get_issues("", client=_client(handler), settings=settings) == []
        assert get_issues(None, client=_client(handler), settings=settings) == []

    def test_success(self, settings, issue_payloads):
        """A page is requested with page/state params and validated."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=issue_payloads)

        issues = get_issues("git@github.com:pmndrs/jotai.git", page=2, state="open",
                            client=_client(handler), settings=settings)

        assert [i.number for i in issues] == [1, 2, 3]
        assert all(isinstance(i, Issue) for i in issues)
        request = seen[0]
        assert request.url.path == "/repos/pmndrs/jotai/issues"
        assert request.url.params["page"] == "2"
        assert request.url.params["state"] == "open"
        assert request.headers["Accept"] == "application/vnd.github+json"
        assert "Authorization" not in request.headers

    def test_token_sent_as_bearer(self, settings):
        """A configured token is sent in the Authorization header."""
        settings.github_token = "t0k"
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        get_issues(REPO, client=_client(handler), settings=settings)
        assert seen[0].headers["Authorization"] == "Bearer t0k"

    def test_http_error_returns_none(self, settings):
        """Errors are logged and reported as None."""
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        assert get_issues(REPO, client=_client(handler), settings=settings) is None

    def test_gitlab_not_supported(self, settings):
        """GitLab repos parse but have no issue API support yet."""
        def handler(request):
            raise AssertionError("no request expected")

        assert get_issues("https://gitlab.com/inkscape/inkscape", client=_client(handler), settings=settings) is None

    def test_unknown_state_returns_none(self, settings):
        """Invalid state values are refused before any request."""
        def handler(request):
            raise AssertionError("no request expected")

        assert get_issues(REPO, state="stale", client=_client(handler), settings=settings) is None

    def test_rate_limit_is_retried(self, settings, issue_payloads):
        """A 429 with Retry-After is retried and the next answer used."""
        responses = [
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json=issue_payloads[:1]),
        ]

        def handler(request):
            return responses.pop(0)

        issues = get_issues(REPO, client=_client(handler), settings=settings)
        assert [i.number for i in issues] == [1]
        assert responses == []

    def test_server_errors_exhaust_retries(self, settings):
        """Persistent 5xx gives up after max_retries attempts."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        assert get_issues(REPO, client=_client(handler), settings=settings) is None
        assert len(calls) == settings.max_retries

    def test_plain_forbidden_not_retried(self, settings):
        """A 403 without rate-limit headers is a permanent failure."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, json={"message": "Forbidden"})

        assert get_issues(REPO, client=_client(handler), settings=settings) is None
        assert len(calls) == 1

    @patch('httpx.Client')
    def test_creates_own_client(self, mock_client, settings, issue_payloads):
        """Without a client one is created and closed per call."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.headers = httpx.Headers()
        mock_response.json.return_value = issue_payloads[:2]
        mock_response.raise_for_status.return_value = None

        mock_client.return_value.__enter__.return_value.get.return_value = mock_response

        issues = get_issues(REPO, settings=settings)
        assert [i.title for i in issues] == ["Crash on start", "Docs typo"]


class TestFetchIssuePages:
    """Test the sequential, throttled page walk."""

    def test_stops_on_empty_page(self, settings, issue_payloads, monkeypatch):
        """The walk ends at the first empty page and filters pull requests."""
        sleeps = []
        monkeypatch.setattr("issueradar.core.issues.time.sleep", lambda s: sleeps.append(s))
        pages = {"1": issue_payloads[:2], "2": issue_payloads[2:], "3": []}
        requested = []

        def handler(request):
            page = request.url.params["page"]
            requested.append(page)
            return httpx.Response(200, json=pages[page])

        issues = fetch_issue_pages(REPO, pages=5, delay=0.25, client=_client(handler), settings=settings)

        assert requested == ["1", "2", "3"]
        assert sleeps == [0.25, 0.25, 0.25]
        assert [i.number for i in issues] == [1, 2]

    def test_include_pulls(self, settings, issue_payloads):
        """Pull requests are kept on request."""
        def handler(request):
            return httpx.Response(200, json=issue_payloads)

        issues = fetch_issue_pages(REPO, pages=1, include_pulls=True, client=_client(handler), settings=settings)
        assert [i.number for i in issues] == [1, 2, 3]

    def test_failed_page_keeps_earlier_pages(self, settings, issue_payloads):
        """A failing page stops the walk without losing what was fetched."""
        def handler(request):
            if request.url.params["page"] == "1":
                return httpx.Response(200, json=issue_payloads[:1])
            return httpx.Response(404)

        issues = fetch_issue_pages(REPO, pages=3, client=_client(handler), settings=settings)
        assert [i.number for i in issues] == [1]

    def test_default_delay_from_settings(self, settings, monkeypatch):
        """The configured page_delay is used when no delay is given."""
        sleeps = []
        monkeypatch.setattr("issueradar.core.issues.time.sleep", lambda s: sleeps.append(s))
        settings.page_delay = 0.5

        def handler(request):
            return httpx.Response(200, json=[])

        assert fetch_issue_pages(REPO, pages=2, client=_client(handler), settings=settings) == []
        assert sleeps == [0.5]

    def test_strict_walk_raises_when_first_page_fails(self, settings):
        """Strict mode turns a failed first page into IssueFetchError."""
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(IssueFetchError):
            fetch_issue_pages(REPO, pages=2, strict=True, client=_client(handler), settings=settings)
        assert fetch_issue_pages(REPO, pages=2, client=_client(handler), settings=settings) == []

    def test_strict_walk_keeps_earlier_pages(self, settings, issue_payloads):
        """Strict mode still returns what was fetched before a later failure."""
        def handler(request):
            if request.url.params["page"] == "1":
                return httpx.Response(200, json=issue_payloads[:1])
            return httpx.Response(500)

        issues = fetch_issue_pages(REPO, pages=3, strict=True, client=_client(handler), settings=settings)
        assert [i.number for i in issues] == [1]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
