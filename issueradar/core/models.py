"""Data types shared across IssueRadar.

The GitHub-owned `Issue` record is modelled loosely: known fields are typed
and everything else the API returns is kept as-is, since this package only
reads issues and never writes them back.

Example:
    ```python
    from issueradar.core.models import Issue, ChatMessage

    issue = Issue.model_validate({"id": 1, "number": 7, "title": "Crash on start"})
    msg = ChatMessage(role="user", content="Summarize")
    ```
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Provider(str, Enum):
    """Git hosting service inferred from a repository URL."""

    GITHUB = "GITHUB"
    GITLAB = "GITLAB"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ParsedRepoRef:
    """Result of parsing a repository URL.

    Attributes:
        user: Owner (user or organization) segment, empty when unknown.
        repo: Repository name segment, empty when unknown.
        provider: Detected hosting provider.
    """

    user: str = ""
    repo: str = ""
    provider: Provider = Provider.UNKNOWN

    @property
    def is_known(self) -> bool:
        return self.provider is not Provider.UNKNOWN

    @property
    def full_name(self) -> str:
        return f"{self.user}/{self.repo}" if self.is_known else ""

    def to_dict(self) -> Dict[str, str]:
        return {"user": self.user, "repo": self.repo, "provider": self.provider.value}


class Issue(BaseModel):
    """A GitHub issue (or pull request) as returned by the REST API."""

    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    number: Optional[int] = None
    title: str = ""
    body: Optional[str] = None
    state: Optional[str] = None
    html_url: Optional[str] = None
    comments: int = 0
    labels: List[Any] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    pull_request: Optional[Dict[str, Any]] = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    @property
    def label_names(self) -> List[str]:
        # labels come back as objects from the API but as plain strings in fixtures
        names = []
        for label in self.labels:
            if isinstance(label, dict):
                names.append(label.get("name", ""))
            else:
                names.append(str(label))
        return [n for n in names if n]


class ChatMessage(BaseModel):
    """One message of a chat-completion request."""

    role: Literal["system", "assistant", "user"]
    content: str


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Project(BaseModel):
    """A tracked repository that owns digests."""

    # the web app speaks camelCase (repoUrl, createdAt)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=_new_id)
    name: str
    repo_url: str
    description: str = ""
    created_at: datetime = Field(default_factory=_now)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Project name must not be blank")
        return v.strip()

    @field_validator("description", mode="before")
    @classmethod
    def null_description(cls, v: Any) -> Any:
        return v or ""


class Digest(BaseModel):
    """AI-generated summary of a project's issues."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=_new_id)
    project_id: str
    content: str
    published: bool = False
    created_at: datetime = Field(default_factory=_now)
