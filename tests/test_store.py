"""Tests for project and digest persistence."""

import json

import httpx
import pytest

from issueradar.core.config import Settings
from issueradar.core.digest import BasicChat, DigestComposer
from issueradar.core.models import Issue
from issueradar.core.store import (
    ApiStore,
    LimitExceededError,
    LocalStore,
    NotFoundError,
    StoreError,
    get_store,
)
from issueradar.core.url_parser import UnsupportedRepoUrlError

JOTAI = "https://github.com/pmndrs/jotai"


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "store.json")


class TestLocalProjects:
    """Project CRUD on the JSON-file store."""

    def test_create_and_get(self, store):
        """Created projects can be read back, also from a fresh instance."""
        project = store.create_project("jotai", JOTAI, "state management")
        assert store.get_project(project.id) == project
        assert LocalStore(store.path).get_project(project.id).name == "jotai"

    def test_unknown_repo_url_rejected(self, store):
        """Projects need a GitHub or GitLab URL."""
        with pytest.raises(UnsupportedRepoUrlError):
            store.create_project("docs", "https://nextjs.org/docs/testing")
        assert store.list_projects() == []

    def test_project_limit(self, tmp_path):
        """The role's project limit is enforced."""
        store = LocalStore(tmp_path / "store.json", max_projects=1)
        store.create_project("jotai", JOTAI)
        with pytest.raises(LimitExceededError):
            store.create_project("zustand", "https://github.com/pmndrs/zustand")

    def test_list_newest_first(self, store):
        """Projects are listed newest first."""
        first = store.create_project("jotai", JOTAI)
        second = store.create_project("zustand", "https://github.com/pmndrs/zustand")
        assert [p.id for p in store.list_projects()] == [second.id, first.id]

    def test_update(self, store):
        """Name and description can change; unknown fields cannot."""
        project = store.create_project("jotai", JOTAI)
        updated = store.update_project(project.id, name="Jotai", description="atoms")
        assert (updated.name, updated.description, updated.repo_url) == ("Jotai", "atoms", JOTAI)
        with pytest.raises(ValueError):
            store.update_project(project.id, owner="someone")
        with pytest.raises(UnsupportedRepoUrlError):
            store.update_project(project.id, repo_url="https://example.com/x/y")
        with pytest.raises(NotFoundError):
            store.update_project("missing", name="x")

    def test_delete_cascades_to_digests(self, store):
        """Deleting a project removes its digests."""
        project = store.create_project("jotai", JOTAI)
        digest = store.create_digest(project.id, "summary")
        store.delete_project(project.id)
        with pytest.raises(NotFoundError):
            store.get_project(project.id)
        with pytest.raises(NotFoundError):
            store.get_digest(digest.id)
        with pytest.raises(NotFoundError):
            store.delete_project(project.id)


class TestLocalDigests:
    """Digest CRUD on the JSON-file store."""

    def test_latest_digest(self, store):
        """The most recently created digest is the active one."""
        project = store.create_project("jotai", JOTAI)
        assert store.latest_digest(project.id) is None
        store.create_digest(project.id, "first")
        second = store.create_digest(project.id, "second")
        assert store.latest_digest(project.id).id == second.id
        assert [d.content for d in store.list_digests(project.id)] == ["second", "first"]

    def test_create_is_idempotent_with_id(self, store):
        """Repeating a create with the same digest id stores one digest."""
        project = store.create_project("jotai", JOTAI)
        a = store.create_digest(project.id, "text", digest_id="d-1")
        b = store.create_digest(project.id, "text", digest_id="d-1")
        assert a.id == b.id == "d-1"
        assert len(store.list_digests(project.id)) == 1

    def test_digest_needs_project(self, store):
        """Digests belong to an existing project."""
        with pytest.raises(NotFoundError):
            store.create_digest("missing", "text")

    def test_digest_limit(self, tmp_path):
        """The per-project digest limit is enforced."""
        store = LocalStore(tmp_path / "store.json", max_digests=1)
        project = store.create_project("jotai", JOTAI)
        store.create_digest(project.id, "one")
        with pytest.raises(LimitExceededError):
            store.create_digest(project.id, "two")

    def test_publish_and_delete(self, store):
        """Digests can be published, edited and deleted."""
        project = store.create_project("jotai", JOTAI)
        digest = store.create_digest(project.id, "draft")
        assert digest.published is False

        updated = store.update_digest(digest.id, content="final", published=True)
        assert (updated.content, updated.published) == ("final", True)
        assert store.get_digest(digest.id).published is True

        store.delete_digest(digest.id)
        with pytest.raises(NotFoundError):
            store.delete_digest(digest.id)

    def test_corrupt_file(self, tmp_path):
        """An unreadable store file is a StoreError."""
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreError):
            LocalStore(path).list_projects()


def _api(handler, **kwargs):
    return ApiStore("http://radar.test", session_token="abc", transport=httpx.MockTransport(handler), **kwargs)


PROJECT_JSON = {
    "id": "p1",
    "name": "jotai",
    "repoUrl": JOTAI,
    "description": None,
    "createdAt": "2024-01-01T00:00:00.000Z",
    "userId": "u1",
}

DIGEST_JSON = {
    "id": "d1",
    "projectId": "p1",
    "content": "summary",
    "published": False,
    "createdAt": "2024-01-02T00:00:00.000Z",
}


class TestApiStore:
    """The web app store, against a mocked transport."""

    def test_list_projects_sends_session(self):
        """Requests carry the session cookie and parse camelCase payloads."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[PROJECT_JSON])

        projects = _api(handler).list_projects()
        assert projects[0].repo_url == JOTAI
        assert "next-auth.session-token=abc" in seen[0].headers["cookie"]
        assert seen[0].url.path == "/api/project"

    def test_get_project_null_is_not_found(self):
        """The endpoint answers null for foreign or missing projects."""
        def handler(request):
            assert request.url.params["projectId"] == "nope"
            return httpx.Response(200, json=None)

        with pytest.raises(NotFoundError):
            _api(handler).get_project("nope")

    def test_create_project(self):
        """Creation posts camelCase fields and reads the project back."""
        posted = []

        def handler(request):
            if request.method == "POST":
                posted.append(json.loads(request.content))
                return httpx.Response(201, json={"projectId": "p1"})
            if request.url.params.get("projectId") == "p1":
                return httpx.Response(200, json=PROJECT_JSON)
            return httpx.Response(200, json=[])

        project = _api(handler).create_project("jotai", JOTAI)
        assert project.id == "p1"
        assert posted == [{"name": "jotai", "repoUrl": JOTAI, "description": ""}]

    def test_project_limit_checked_before_post(self):
        """No POST is made once the limit is reached."""
        def handler(request):
            assert request.method == "GET"
            return httpx.Response(200, json=[PROJECT_JSON])

        with pytest.raises(LimitExceededError):
            _api(handler, max_projects=1).create_project("zustand", "https://github.com/pmndrs/zustand")

    def test_create_digest(self):
        """Digests are posted per project with an idempotency key."""
        seen = []

        def handler(request):
            seen.append(request)
            if request.method == "POST":
                return httpx.Response(201, json={"digestId": "d1"})
            return httpx.Response(200, json=DIGEST_JSON)

        digest = _api(handler).create_digest("p1", "summary", digest_id="local-1")
        post = seen[0]
        assert post.url.params["projectId"] == "p1"
        assert json.loads(post.content) == {"content": "summary"}
        assert post.headers["Idempotency-Key"] == "local-1"
        assert digest.id == "d1"
        assert digest.project_id == "p1"

    def test_repeated_create_posts_once(self):
        """A repeated create with the same digest id only reads the digest back."""
        posts = []

        def handler(request):
            if request.method == "POST":
                posts.append(request)
                return httpx.Response(201, json={"digestId": "d1"})
            return httpx.Response(200, json=DIGEST_JSON)

        store = _api(handler)
        first = store.create_digest("p1", "summary", digest_id="local-1")
        second = store.create_digest("p1", "summary", digest_id="local-1")
        assert first.id == second.id == "d1"
        assert len(posts) == 1

    def test_composer_retry_after_failed_read_posts_once(self, settings, issue_payloads):
        """A save whose read-back fails is retried without creating a second digest."""
        posts = []
        reads = []

        def handler(request):
            if request.method == "POST":
                posts.append(request)
                return httpx.Response(201, json={"digestId": "d1"})
            reads.append(request)
            if len(reads) == 1:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json=DIGEST_JSON)

        issues = [Issue.model_validate(p) for p in issue_payloads[:2]]
        digest = DigestComposer(BasicChat(), _api(handler), settings).compose("p1", issues)

        assert digest.id == "d1"
        assert len(posts) == 1
        assert len(reads) == 2

    def test_create_without_digest_id_in_answer(self):
        """A POST answer without digestId is a StoreError."""
        def handler(request):
            return httpx.Response(201, json={})

        with pytest.raises(StoreError):
            _api(handler).create_digest("p1", "summary")

    def test_latest_digest(self):
        """The endpoint's single latest digest is exposed as a list."""
        def handler(request):
            return httpx.Response(200, json={"digests": DIGEST_JSON, "project": PROJECT_JSON})

        store = _api(handler)
        assert [d.id for d in store.list_digests("p1")] == ["d1"]
        assert store.latest_digest("p1").content == "summary"

    def test_no_digest_yet(self):
        """A project without digests has no latest digest."""
        def handler(request):
            return httpx.Response(200, json={"digests": None, "project": PROJECT_JSON})

        assert _api(handler).latest_digest("p1") is None

    def test_publish(self):
        """Publishing sends a PUT with the id and flag only."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={**DIGEST_JSON, "published": True})

        assert _api(handler).update_digest("d1", published=True).published is True
        assert bodies == [{"id": "d1", "published": True}]

    def test_errors(self):
        """404 maps to NotFoundError, other failures to StoreError."""
        def not_found(request):
            return httpx.Response(404, text="Project not found")

        def broken(request):
            return httpx.Response(500, text="boom")

        def offline(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(NotFoundError):
            _api(not_found).delete_digest("d1")
        with pytest.raises(StoreError):
            _api(broken).list_projects()
        with pytest.raises(StoreError):
            _api(offline).list_projects()


class TestGetStore:
    """Store factory."""

    def test_kinds(self, tmp_path):
        """Settings select the store implementation."""
        assert isinstance(get_store(Settings(cache_dir=str(tmp_path))), LocalStore)
        assert isinstance(get_store(Settings(store_kind="api")), ApiStore)
        with pytest.raises(ValueError):
            get_store(Settings(store_kind="s3"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
