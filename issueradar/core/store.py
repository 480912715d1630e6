"""Persistence for projects and digests.

Two interchangeable stores implement the same operations:

- `LocalStore`: a single JSON document under the cache directory, for
  running IssueRadar standalone from the command line.
- `ApiStore`: the IssueRadar web app's JSON endpoints (`/api/project`,
  `/api/digest`), authenticated with the app's session cookie.

Both enforce the per-role limits from `Settings` (projects per account,
digests per project) and refuse projects whose repository URL is not a
recognised GitHub/GitLab URL.

Example:
    ```python
    from issueradar.core.config import load_settings
    from issueradar.core.store import get_store

    store = get_store(load_settings())
    project = store.create_project("jotai", "https://github.com/pmndrs/jotai")
    store.create_digest(project.id, "Mostly bug reports about atoms.")
    print(store.latest_digest(project.id).content)
    ```
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import logging
import os
import tempfile

import httpx
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from .config import Settings
from .models import Digest, Project
from .url_parser import require_known

logger = logging.getLogger(__name__)

SESSION_COOKIE = "next-auth.session-token"
PROJECT_FIELDS = ("name", "repo_url", "description")


class StoreError(Exception):
    """A persistence operation failed."""


class NotFoundError(StoreError):
    """The requested project or digest does not exist."""


class LimitExceededError(StoreError):
    """The account reached its project or digest limit."""


class Store(ABC):
    """Operations every persistence backend provides."""

    def __init__(self, max_projects: int = 3, max_digests: int = 10):
        self.max_projects = max_projects
        self.max_digests = max_digests

    def close(self) -> None:
        """Release any connections held by the store."""

    # projects

    @abstractmethod
    def list_projects(self) -> List[Project]:
        """Return all projects, newest first."""

    @abstractmethod
    def get_project(self, project_id: str) -> Project:
        """Return a project or raise `NotFoundError`."""

    @abstractmethod
    def create_project(self, name: str, repo_url: str, description: str = "") -> Project:
        """Create a project for a recognised repository URL."""

    @abstractmethod
    def update_project(self, project_id: str, **fields: Any) -> Project:
        """Change name, repo_url and/or description."""

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        """Delete a project together with its digests."""

    # digests

    @abstractmethod
    def list_digests(self, project_id: str) -> List[Digest]:
        """Return a project's digests, newest first."""

    @abstractmethod
    def get_digest(self, digest_id: str) -> Digest:
        """Return a digest or raise `NotFoundError`."""

    @abstractmethod
    def create_digest(self, project_id: str, content: str, digest_id: str | None = None) -> Digest:
        """Store a digest. Repeating a call with the same `digest_id` is a no-op."""

    @abstractmethod
    def update_digest(self, digest_id: str, content: str | None = None, published: bool | None = None) -> Digest:
        """Edit a digest's content and/or publish flag."""

    @abstractmethod
    def delete_digest(self, digest_id: str) -> None:
        """Delete a digest."""

    def latest_digest(self, project_id: str) -> Optional[Digest]:
        """Return the project's most recent digest, or None."""
        digests = self.list_digests(project_id)
        return max(digests, key=lambda d: d.created_at) if digests else None

    def _check_project_fields(self, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(PROJECT_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update project fields: {', '.join(sorted(unknown))}")
        if fields.get("repo_url") is not None:
            require_known(fields["repo_url"])


# ---- local JSON store -------------------------------------------------------

class LocalStore(Store):
    """Projects and digests kept in one JSON file.

    Every write rewrites the whole document through a temporary file and
    `os.replace`, so a crash never leaves a half-written store behind.
    """

    def __init__(self, path: str | Path, max_projects: int = 3, max_digests: int = 10):
        super().__init__(max_projects, max_digests)
        self.path = Path(path)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalStore":
        return cls(
            Path(settings.cache_dir) / "store.json",
            max_projects=settings.max_projects,
            max_digests=settings.max_digests,
        )

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            return {"projects": [], "digests": []}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read store {self.path}: {e}") from e
        data.setdefault("projects", [])
        data.setdefault("digests", [])
        return data

    def _save(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise StoreError(f"Cannot write store {self.path}: {e}") from e

    def _projects(self, data) -> List[Project]:
        return [Project.model_validate(p) for p in data["projects"]]

    def _digests(self, data) -> List[Digest]:
        return [Digest.model_validate(d) for d in data["digests"]]

    def list_projects(self) -> List[Project]:
        projects = self._projects(self._load())
        return sorted(projects, key=lambda p: p.created_at, reverse=True)

    def get_project(self, project_id: str) -> Project:
        for p in self._projects(self._load()):
            if p.id == project_id:
                return p
        raise NotFoundError(f"Project not found: {project_id}")

    def create_project(self, name: str, repo_url: str, description: str = "") -> Project:
        require_known(repo_url)
        data = self._load()
        if len(data["projects"]) >= self.max_projects:
            raise LimitExceededError(f"Project limit reached ({self.max_projects})")
        project = Project(name=name, repo_url=repo_url.strip(), description=description)
        data["projects"].append(project.model_dump(mode="json"))
        self._save(data)
        logger.info(f"Created project {project.id} ({project.name})")
        return project

    def update_project(self, project_id: str, **fields: Any) -> Project:
        self._check_project_fields(fields)
        data = self._load()
        for i, raw in enumerate(data["projects"]):
            if raw["id"] == project_id:
                current = Project.model_validate(raw)
                changes = {k: v for k, v in fields.items() if v is not None}
                try:
                    updated = Project.model_validate({**current.model_dump(), **changes})
                except ValidationError as e:
                    raise ValueError(str(e)) from e
                data["projects"][i] = updated.model_dump(mode="json")
                self._save(data)
                return updated
        raise NotFoundError(f"Project not found: {project_id}")

    def delete_project(self, project_id: str) -> None:
        data = self._load()
        remaining = [p for p in data["projects"] if p["id"] != project_id]
        if len(remaining) == len(data["projects"]):
            raise NotFoundError(f"Project not found: {project_id}")
        data["projects"] = remaining
        data["digests"] = [d for d in data["digests"] if d["project_id"] != project_id]
        self._save(data)
        logger.info(f"Deleted project {project_id}")

    def list_digests(self, project_id: str) -> List[Digest]:
        digests = [d for d in self._digests(self._load()) if d.project_id == project_id]
        return sorted(digests, key=lambda d: d.created_at, reverse=True)

    def get_digest(self, digest_id: str) -> Digest:
        for d in self._digests(self._load()):
            if d.id == digest_id:
                return d
        raise NotFoundError(f"Digest not found: {digest_id}")

    def create_digest(self, project_id: str, content: str, digest_id: str | None = None) -> Digest:
        data = self._load()
        if not any(p["id"] == project_id for p in data["projects"]):
            raise NotFoundError(f"Project not found: {project_id}")

        if digest_id:
            for raw in data["digests"]:
                if raw["id"] == digest_id:
                    return Digest.model_validate(raw)

        count = sum(1 for d in data["digests"] if d["project_id"] == project_id)
        if count >= self.max_digests:
            raise LimitExceededError(f"Digest limit reached for project {project_id} ({self.max_digests})")

        digest = Digest(project_id=project_id, content=content)
        if digest_id:
            digest.id = digest_id
        data["digests"].append(digest.model_dump(mode="json"))
        self._save(data)
        logger.info(f"Saved digest {digest.id} for project {project_id}")
        return digest

    def update_digest(self, digest_id: str, content: str | None = None, published: bool | None = None) -> Digest:
        data = self._load()
        for i, raw in enumerate(data["digests"]):
            if raw["id"] == digest_id:
                digest = Digest.model_validate(raw)
                if content is not None:
                    digest.content = content
                if published is not None:
                    digest.published = published
                data["digests"][i] = digest.model_dump(mode="json")
                self._save(data)
                return digest
        raise NotFoundError(f"Digest not found: {digest_id}")

    def delete_digest(self, digest_id: str) -> None:
        data = self._load()
        remaining = [d for d in data["digests"] if d["id"] != digest_id]
        if len(remaining) == len(data["digests"]):
            raise NotFoundError(f"Digest not found: {digest_id}")
        data["digests"] = remaining
        self._save(data)


# ---- IssueRadar web API store ----------------------------------------------

class ApiStore(Store):
    """Client for the IssueRadar web app's project and digest endpoints.

    The digest endpoint only ever returns a project's latest digest, so
    `list_digests` holds at most one item and the digest limit is left to
    the server.
    """

    def __init__(
        self,
        base_url: str,
        session_token: str | None = None,
        max_projects: int = 3,
        max_digests: int = 10,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(max_projects, max_digests)
        headers = {"Content-Type": "application/json"}
        if session_token:
            headers["Cookie"] = f"{SESSION_COOKIE}={session_token}"
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=20.0,
            transport=transport,
        )
        # client digest_id -> server digestId, for retried creates
        self._created: Dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiStore":
        return cls(
            settings.api_url,
            settings.session_token,
            max_projects=settings.max_projects,
            max_digests=settings.max_digests,
        )

    def close(self) -> None:
        self.client.close()

    def _call(self, method: str, path: str, *, params=None, json_body=None, headers=None) -> Any:
        try:
            r = self.client.request(method, path, params=params, json=json_body, headers=headers)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if r.status_code == 404:
            raise NotFoundError(r.text or f"{path} not found")
        if r.status_code == 401:
            raise StoreError("Not signed in: set ISSUERADAR_SESSION_TOKEN")
        if r.status_code >= 400:
            raise StoreError(f"{method} {path} returned {r.status_code}: {r.text}")
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise StoreError(f"{method} {path} returned invalid JSON") from e

    def list_projects(self) -> List[Project]:
        return [Project.model_validate(p) for p in self._call("GET", "/api/project") or []]

    def get_project(self, project_id: str) -> Project:
        data = self._call("GET", "/api/project", params={"projectId": project_id})
        if not data:
            raise NotFoundError(f"Project not found: {project_id}")
        return Project.model_validate(data)

    def create_project(self, name: str, repo_url: str, description: str = "") -> Project:
        require_known(repo_url)
        if len(self.list_projects()) >= self.max_projects:
            raise LimitExceededError(f"Project limit reached ({self.max_projects})")
        data = self._call(
            "POST",
            "/api/project",
            json_body={"name": name, "repoUrl": repo_url.strip(), "description": description},
        )
        return self.get_project(data["projectId"])

    def update_project(self, project_id: str, **fields: Any) -> Project:
        self._check_project_fields(fields)
        body = {"id": project_id}
        body.update({to_camel(k): v for k, v in fields.items() if v is not None})
        return Project.model_validate(self._call("PUT", "/api/project", json_body=body))

    def delete_project(self, project_id: str) -> None:
        self._call("DELETE", "/api/project", params={"projectId": project_id})

    def list_digests(self, project_id: str) -> List[Digest]:
        data = self._call("GET", "/api/digest", params={"projectId": project_id}) or {}
        if not data.get("project"):
            raise NotFoundError(f"Project not found: {project_id}")
        latest = data.get("digests")
        if not latest:
            return []
        if isinstance(latest, list):
            return [Digest.model_validate(d) for d in latest]
        return [Digest.model_validate(latest)]

    def get_digest(self, digest_id: str) -> Digest:
        data = self._call("GET", "/api/digest", params={"digestId": digest_id})
        if not data:
            raise NotFoundError(f"Digest not found: {digest_id}")
        return Digest.model_validate(data)

    def create_digest(self, project_id: str, content: str, digest_id: str | None = None) -> Digest:
        # the server picks the id and ignores ours, so a repeated call with a
        # known digest_id only reads back what the first POST created
        if digest_id and digest_id in self._created:
            return self.get_digest(self._created[digest_id])

        headers = {"Idempotency-Key": digest_id} if digest_id else None
        data = self._call(
            "POST",
            "/api/digest",
            params={"projectId": project_id},
            json_body={"content": content},
            headers=headers,
        )
        if not data or "digestId" not in data:
            raise StoreError(f"POST /api/digest for project {project_id} returned no digestId")
        if digest_id:
            self._created[digest_id] = data["digestId"]
        return self.get_digest(data["digestId"])

    def update_digest(self, digest_id: str, content: str | None = None, published: bool | None = None) -> Digest:
        body: Dict[str, Any] = {"id": digest_id}
        if content is not None:
            body["content"] = content
        if published is not None:
            body["published"] = published
        return Digest.model_validate(self._call("PUT", "/api/digest", json_body=body))

    def delete_digest(self, digest_id: str) -> None:
        self._call("DELETE", "/api/digest", params={"digestId": digest_id})


def get_store(settings: Settings) -> Store:
    """Factory that returns the store selected by `settings.store_kind`.

    Raises:
        ValueError: If an unknown store kind is configured.
    """
    kind = (settings.store_kind or "local").lower()
    if kind == "local":
        return LocalStore.from_settings(settings)
    if kind == "api":
        return ApiStore.from_settings(settings)
    raise ValueError(f"Unknown store kind: {kind}")
